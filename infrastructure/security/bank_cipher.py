"""
银行账号加解密

账号明文只在更新银行信息和提现打款时出现；入库的是 Fernet 密文。
"""
from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from application.ports.crypto import SecretCipherPort
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException

logger = get_logger(__name__)


def _derive_key(secret: str) -> bytes:
    # Fernet 需要 32 字节 urlsafe-base64 密钥
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class BankAccountCipher(SecretCipherPort):
    def __init__(self, secret: Optional[str] = None) -> None:
        self._fernet = Fernet(_derive_key(secret or settings.ledger.bank_encryption_key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            logger.error("bank_account_decrypt_failed")
            raise DomainValidationException("Stored bank account cannot be decrypted", field="bank_account") from exc
