"""
Tests for `services/enom_registrar.py` with a mocked HTTP session.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from services.enom_registrar import (
    LIVE_HOST,
    TEST_HOST,
    EnomRegistrar,
    parse_expiration,
    parse_text_response,
)

SUCCESS_BODY = """;URL Interface
;Machine is SJL0VWRESELL_T
Extension=successful
DomainName=example.com
OrderID=157609741
RRPCode=200
RRPText=Command completed successfully
ExpirationDate=2/11/2026 6:00:00 AM
ErrCount=0
Done=true
"""

ERROR_BODY = """ErrCount=1
Err1=Domain name not found
Done=true
"""


def _registrar(body: str = SUCCESS_BODY, **kwargs) -> tuple[EnomRegistrar, MagicMock]:
    session = MagicMock()
    response = MagicMock()
    response.text = body
    session.get.return_value = response
    return EnomRegistrar("reseller", "secret", session=session, **kwargs), session


def test_parse_text_response_skips_comments() -> None:
    data = parse_text_response(SUCCESS_BODY)

    assert data["OrderID"] == "157609741"
    assert data["ErrCount"] == "0"
    assert not any(key.startswith(";") for key in data)


def test_parse_expiration_formats() -> None:
    assert parse_expiration("2/11/2026 6:00:00 AM") == datetime(2026, 2, 11, 6, 0, tzinfo=timezone.utc)
    assert parse_expiration("2/11/2026") == datetime(2026, 2, 11, tzinfo=timezone.utc)
    assert parse_expiration("") is None
    assert parse_expiration("soon") is None


def test_requires_credentials() -> None:
    with pytest.raises(RuntimeError, match="ENOM_UID"):
        EnomRegistrar("", "secret", session=MagicMock())


def test_host_selection() -> None:
    assert _registrar()[0].host == TEST_HOST
    assert _registrar(live=True)[0].host == LIVE_HOST


def test_extend_success() -> None:
    registrar, session = _registrar()

    result = registrar.extend("example.com", 2, "attempt-1")

    assert result.success
    assert result.confirmation_id == "157609741"
    assert result.new_expires_at == datetime(2026, 2, 11, 6, 0, tzinfo=timezone.utc)

    url = session.get.call_args.args[0]
    params = session.get.call_args.kwargs["params"]
    assert url == f"https://{TEST_HOST}/interface.asp"
    assert params["command"] == "Extend"
    assert params["sld"] == "example"
    assert params["tld"] == "com"
    assert params["NumYears"] == 2
    assert params["ResponseType"] == "Text"


def test_extend_multi_label_tld() -> None:
    registrar, session = _registrar()

    registrar.extend("shop.co.uk", 1, "attempt-1")

    params = session.get.call_args.kwargs["params"]
    assert (params["sld"], params["tld"]) == ("shop", "co.uk")


def test_extend_registrar_error_is_failure() -> None:
    registrar, _ = _registrar(ERROR_BODY)

    result = registrar.extend("example.com", 1, "attempt-1")

    assert not result.success
    assert result.message == "Domain name not found"


def test_extend_http_error_is_failure() -> None:
    registrar, session = _registrar()
    session.get.side_effect = requests.ConnectionError("connection refused")

    result = registrar.extend("example.com", 1, "attempt-1")

    assert not result.success
    assert "connection refused" in result.message


def test_extend_invalid_domain() -> None:
    registrar, session = _registrar()

    assert not registrar.extend("localhost", 1, "attempt-1").success
    session.get.assert_not_called()
