"""Add MFA tables (settings, TOTP secrets, backup codes, attempts, devices, audit log).

Revision ID: 001_mfa_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_mfa_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_settings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL UNIQUE,
            enabled BOOLEAN NOT NULL DEFAULT false,
            enforced BOOLEAN NOT NULL DEFAULT false,
            primary_method VARCHAR(5) NULL,
            backup_method VARCHAR(5) NULL,
            last_verified_at TIMESTAMP WITH TIME ZONE NULL,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_settings_principal_id ON mfa_settings(principal_id)"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_totp_secrets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL,
            encrypted_secret BYTEA NOT NULL,
            status VARCHAR(8) NOT NULL DEFAULT 'pending',
            last_used_step BIGINT NULL,
            verified_at TIMESTAMP WITH TIME ZONE NULL,
            last_used_at TIMESTAMP WITH TIME ZONE NULL,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_totp_secrets_principal_id ON mfa_totp_secrets(principal_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_totp_secrets_principal_status "
        "ON mfa_totp_secrets(principal_id, status)"
    )
    # At most one active secret per principal
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_mfa_totp_secrets_one_active "
        "ON mfa_totp_secrets(principal_id) WHERE status = 'active'"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_backup_codes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL,
            code_hash VARCHAR(64) NOT NULL,
            used_at TIMESTAMP WITH TIME ZONE NULL,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            CONSTRAINT uq_mfa_backup_codes_hash UNIQUE (principal_id, code_hash)
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_backup_codes_principal_id ON mfa_backup_codes(principal_id)"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_verification_attempts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL,
            method VARCHAR(32) NOT NULL,
            success BOOLEAN NOT NULL,
            device_fingerprint VARCHAR(64) NULL,
            attempted_at TIMESTAMP WITH TIME ZONE NOT NULL
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_verification_attempts_window "
        "ON mfa_verification_attempts(principal_id, success, attempted_at)"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_devices (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL,
            device_fingerprint VARCHAR(64) NOT NULL,
            device_name VARCHAR(255) NULL,
            device_type VARCHAR(32) NULL,
            user_agent VARCHAR(512) NULL,
            browser_info JSON NULL,
            ip_address VARCHAR(64) NULL,
            trust_status VARCHAR(9) NOT NULL DEFAULT 'untrusted',
            trust_token_hash VARCHAR(64) NULL,
            trusted_at TIMESTAMP WITH TIME ZONE NULL,
            trust_expires_at TIMESTAMP WITH TIME ZONE NULL,
            last_used_at TIMESTAMP WITH TIME ZONE NULL,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            CONSTRAINT uq_mfa_devices_principal_fingerprint UNIQUE (principal_id, device_fingerprint)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_mfa_devices_principal_id ON mfa_devices(principal_id)")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS mfa_audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_id VARCHAR(64) NOT NULL,
            event_type VARCHAR(64) NOT NULL,
            method VARCHAR(32) NULL,
            ip_address VARCHAR(64) NULL,
            user_agent VARCHAR(512) NULL,
            device_fingerprint VARCHAR(64) NULL,
            metadata JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_mfa_audit_log_principal_created "
        "ON mfa_audit_log(principal_id, created_at)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_mfa_audit_log_principal_created")
    op.execute("DROP TABLE IF EXISTS mfa_audit_log")
    op.execute("DROP INDEX IF EXISTS ix_mfa_devices_principal_id")
    op.execute("DROP TABLE IF EXISTS mfa_devices")
    op.execute("DROP INDEX IF EXISTS ix_mfa_verification_attempts_window")
    op.execute("DROP TABLE IF EXISTS mfa_verification_attempts")
    op.execute("DROP INDEX IF EXISTS ix_mfa_backup_codes_principal_id")
    op.execute("DROP TABLE IF EXISTS mfa_backup_codes")
    op.execute("DROP INDEX IF EXISTS uq_mfa_totp_secrets_one_active")
    op.execute("DROP INDEX IF EXISTS ix_mfa_totp_secrets_principal_status")
    op.execute("DROP INDEX IF EXISTS ix_mfa_totp_secrets_principal_id")
    op.execute("DROP TABLE IF EXISTS mfa_totp_secrets")
    op.execute("DROP INDEX IF EXISTS ix_mfa_settings_principal_id")
    op.execute("DROP TABLE IF EXISTS mfa_settings")
