from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from dwey_service.app.exceptions import (
    AccountNotFound,
    EmailAlreadySet,
    EmailTaken,
    InvalidInputError,
)
from dwey_service.app.models.account import PaymentMethod
from dwey_service.app.services.account_service import AccountService
from dwey_service.tests.fakes import CREATOR, OTHER


def test_soft_register_grants_signup_bonus_once(account_service: AccountService) -> None:
    account, created = account_service.soft_register("08011111111", "Ada")
    again, created_again = account_service.soft_register(CREATOR, "Someone else")

    assert created is True
    assert created_again is False
    assert account.phone == CREATOR
    assert account.balance == 1000
    assert account.transactions[0].payment_method == PaymentMethod.SIGNUP_BONUS
    assert again.display_name == "Ada"
    assert again.balance == 1000


def test_concurrent_soft_register_creates_single_account(
    account_service: AccountService,
) -> None:
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: account_service.soft_register(CREATOR), range(8)))

    assert [created for _, created in results].count(True) == 1
    assert account_service.get_account(CREATOR).balance == 1000


def test_display_name_defaults_to_phone(account_service: AccountService) -> None:
    account, _ = account_service.soft_register(CREATOR, "   ")
    assert account.display_name == CREATOR


def test_register_email_normalizes_and_is_idempotent(
    account_service: AccountService,
) -> None:
    account, assigned = account_service.register_email(CREATOR, "  Ada@Example.COM ")
    same, assigned_again = account_service.register_email(CREATOR, "ada@example.com")

    assert assigned is True
    assert account.email == "ada@example.com"
    assert assigned_again is False
    assert same.email == "ada@example.com"
    assert account_service.is_email_taken("ADA@example.com")


def test_register_email_cannot_change_existing(account_service: AccountService) -> None:
    account_service.register_email(CREATOR, "ada@example.com")
    with pytest.raises(EmailAlreadySet):
        account_service.register_email(CREATOR, "other@example.com")


def test_register_email_rejects_address_of_other_account(
    account_service: AccountService,
) -> None:
    account_service.register_email(CREATOR, "ada@example.com")
    with pytest.raises(EmailTaken):
        account_service.register_email(OTHER, "ada@example.com")


@pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "a b@example.com"])
def test_register_email_rejects_invalid_format(
    account_service: AccountService, email: str
) -> None:
    with pytest.raises(InvalidInputError):
        account_service.register_email(CREATOR, email)


def test_get_account_of_unknown_phone(account_service: AccountService) -> None:
    with pytest.raises(AccountNotFound):
        account_service.get_account(CREATOR)
