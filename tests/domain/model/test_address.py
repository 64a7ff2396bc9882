from __future__ import annotations

import pytest

from converge.domain.model import Address, NodeKind


def test_resource_address_round_trips_through_text() -> None:
    address = Address.parse("local_file.config")

    assert address == Address.resource("local_file", "config")
    assert address.kind is NodeKind.RESOURCE
    assert str(address) == "local_file.config"


def test_data_address_keeps_its_prefix() -> None:
    address = Address.parse("data.env_variable.token")

    assert address.kind is NodeKind.DATA
    assert str(address) == "data.env_variable.token"


def test_provider_is_the_type_prefix() -> None:
    assert Address.parse("http_object.user").provider == "http"
    assert Address.parse("data.secrets_version.db").provider == "secrets"


@pytest.mark.parametrize("value", ["local_file", "data.env_variable", "a.b.c", "data..x", ""])
def test_malformed_addresses_are_rejected(value: str) -> None:
    with pytest.raises(ValueError, match="Invalid address"):
        Address.parse(value)
