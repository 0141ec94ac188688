"""
资金操作的权限判定：俱乐部经营者（创建者/管理员）或平台管理员
"""
from domain.activity.entity import Activity, Club
from domain.common.exceptions import ForbiddenException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from application.dto import CurrentUser


def require_admin(actor: CurrentUser) -> None:
    if not actor.is_admin:
        raise ForbiddenException("需要平台管理员权限")


async def require_club_operator(uow: AbstractUnitOfWork, club_id: int, actor: CurrentUser) -> Club:
    club = await uow.club_repository.get_by_id(club_id)
    if not club:
        raise NotFoundException("Club", club_id)
    if not (actor.is_admin or club.is_operator(actor.id)):
        raise ForbiddenException("无权操作此俱乐部的资金", details={"club_id": club_id})
    return club


async def require_activity_operator(
    uow: AbstractUnitOfWork, activity: Activity, actor: CurrentUser
) -> Club:
    """活动所属俱乐部的经营者、活动领队或平台管理员"""
    club = await uow.club_repository.get_by_id(activity.club_id)
    if not club:
        raise NotFoundException("Club", activity.club_id)
    allowed = actor.is_admin or club.is_operator(actor.id) or activity.leader_id == actor.id
    if not allowed:
        raise ForbiddenException("无权操作此活动", details={"activity_id": activity.id})
    return club
