"""Tests for backup code generation and single-use consumption."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings
from secondfactor.mfa.backup_codes import (
    BACKUP_CODE_ALPHABET,
    BackupCodeManager,
    normalize_backup_code,
)
from secondfactor.models import BackupCode


def test_generate_returns_ten_unique_codes(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    codes = manager.generate("user-1")
    db.commit()

    assert len(codes) == 10
    assert len(set(codes)) == 10
    for code in codes:
        assert len(code) == 8
        assert set(code) <= set(BACKUP_CODE_ALPHABET)
    assert manager.remaining("user-1") == 10


def test_codes_are_stored_hashed(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    codes = manager.generate("user-1")
    db.commit()

    stored = set(db.scalars(select(BackupCode.code_hash).where(BackupCode.principal_id == "user-1")))
    assert not stored & set(codes)
    assert stored == {manager.hash_code("user-1", code) for code in codes}


def test_hash_is_salted_per_principal(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    assert manager.hash_code("user-1", "ABCD2345") != manager.hash_code("user-2", "ABCD2345")


def test_consume_is_single_use(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    codes = manager.generate("user-1")
    db.commit()

    assert manager.consume("user-1", codes[2]) is True
    assert manager.consume("user-1", codes[2]) is False
    assert manager.remaining("user-1") == 9


def test_consume_normalizes_input(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    code = manager.generate("user-1")[0]
    db.commit()

    typed = f" {code[:4].lower()}-{code[4:].lower()} "
    assert normalize_backup_code(typed) == code
    assert manager.consume("user-1", typed) is True


def test_code_of_other_principal_rejected(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    codes = manager.generate("user-1")
    manager.generate("user-2")
    db.commit()

    assert manager.consume("user-2", codes[0]) is False
    assert manager.consume("user-1", codes[0]) is True


def test_wrong_length_rejected_without_lookup(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    manager.generate("user-1")
    assert manager.consume("user-1", "ABC") is False
    assert manager.consume("user-1", "") is False


def test_regenerate_replaces_unused_codes(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings)
    old = manager.generate("user-1")
    assert manager.consume("user-1", old[0])
    db.commit()

    new = manager.generate("user-1")
    db.commit()

    assert manager.remaining("user-1") == 10
    assert not set(new) & set(old)
    for code in old[1:]:
        assert manager.consume("user-1", code) is False
    # Used codes are kept as history
    rows = db.scalars(select(BackupCode).where(BackupCode.principal_id == "user-1")).all()
    assert len(rows) == 11


def test_code_consumed_in_one_session_is_spent_for_another(engine, test_settings: Settings) -> None:
    """A code used through one session no longer matches the conditional update in a second."""
    from secondfactor.db.session import SessionLocal

    setup_session = SessionLocal(bind=engine)
    code = BackupCodeManager(setup_session, test_settings).generate("user-1")[0]
    setup_session.commit()
    setup_session.close()

    results = []
    for _ in range(2):
        session = SessionLocal(bind=engine)
        results.append(BackupCodeManager(session, test_settings).consume("user-1", code))
        session.commit()
        session.close()

    assert sorted(results) == [False, True]


def test_count_is_configurable(db: Session, test_settings: Settings) -> None:
    manager = BackupCodeManager(db, test_settings.model_copy(update={"MFA_BACKUP_CODES_COUNT": 8}))
    assert len(manager.generate("user-1")) == 8
