"""Field-level encryption helpers."""

from .bank_cipher import BankAccountCipher

__all__ = ["BankAccountCipher"]
