import pytest

from pg_wal_receiver.cdc.lsn import INVALID_LSN, LogSequenceNumber
from pg_wal_receiver.cdc.start_position import (
    SEED_LSN,
    StartOffsetPolicy,
    resolve_start_position,
)

LSN = LogSequenceNumber.parse


@pytest.mark.unit
def test_latest_without_persisted_offset_uses_confirmed_flush():
    assert resolve_start_position(StartOffsetPolicy.LATEST, None, "10") == LSN("10")


@pytest.mark.unit
def test_latest_keeps_newer_persisted_offset():
    assert resolve_start_position(StartOffsetPolicy.LATEST, "20", "15") == LSN("20")


@pytest.mark.unit
def test_latest_never_goes_behind_confirmed_flush():
    assert resolve_start_position(StartOffsetPolicy.LATEST, "10", "15") == LSN("15")
    assert resolve_start_position(
        StartOffsetPolicy.LATEST, "0/10", "1/0"
    ) == LSN("1/0")


@pytest.mark.unit
def test_latest_with_nothing_known_returns_invalid_lsn():
    assert resolve_start_position(StartOffsetPolicy.LATEST, None, None) == INVALID_LSN
    assert resolve_start_position(StartOffsetPolicy.LATEST, "3/0", None) == LSN("3/0")


@pytest.mark.unit
def test_explicit_lsn_prefers_persisted_offset():
    assert resolve_start_position(
        StartOffsetPolicy.EXPLICIT_LSN, None, "9/0", configured_lsn="5/A"
    ) == LSN("5/A")
    assert resolve_start_position(
        StartOffsetPolicy.EXPLICIT_LSN, "7/1", "9/0", configured_lsn="5/A"
    ) == LSN("7/1")


@pytest.mark.unit
def test_date_seeded_falls_back_to_seed():
    assert resolve_start_position(StartOffsetPolicy.DATE_SEEDED, None, "9/0") == LSN(
        SEED_LSN
    )
    assert resolve_start_position(
        StartOffsetPolicy.DATE_SEEDED, None, None, seed_lsn="0/5"
    ) == LSN("0/5")
    assert resolve_start_position(
        StartOffsetPolicy.DATE_SEEDED, "2/2", None
    ) == LSN("2/2")


@pytest.mark.unit
def test_unknown_policy_is_a_programming_error():
    with pytest.raises(ValueError):
        resolve_start_position("LATEST", None, "0/1")  # type: ignore[arg-type]


@pytest.mark.unit
def test_malformed_offset_rejected():
    with pytest.raises(ValueError):
        resolve_start_position(StartOffsetPolicy.EXPLICIT_LSN, "not-an-lsn", None)


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("latest", StartOffsetPolicy.LATEST),
        ("LATEST", StartOffsetPolicy.LATEST),
        ("explicit-lsn", StartOffsetPolicy.EXPLICIT_LSN),
        ("lsn", StartOffsetPolicy.EXPLICIT_LSN),
        ("date", StartOffsetPolicy.DATE_SEEDED),
        (" Date_Seeded ", StartOffsetPolicy.DATE_SEEDED),
    ],
)
def test_policy_from_config(raw, expected):
    assert StartOffsetPolicy.from_config(raw) is expected


@pytest.mark.unit
def test_policy_from_config_rejects_unknown():
    with pytest.raises(ValueError):
        StartOffsetPolicy.from_config("earliest")
