from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "teams" (
    "id" UUID NOT NULL PRIMARY KEY,
    "name" VARCHAR(255) NOT NULL,
    "slug" VARCHAR(255) NOT NULL UNIQUE,
    "description" TEXT,
    "type" VARCHAR(50) NOT NULL DEFAULT 'project',
    "status" VARCHAR(50) NOT NULL DEFAULT 'draft',
    "settings" JSONB NOT NULL,
    "tenant_id" VARCHAR(255),
    "owner_type" VARCHAR(100),
    "owner_id" VARCHAR(255),
    "members_count" INT NOT NULL DEFAULT 0,
    "files_count" INT NOT NULL DEFAULT 0,
    "storage_used" BIGINT NOT NULL DEFAULT 0,
    "last_activity_at" TIMESTAMPTZ,
    "deleted_at" TIMESTAMPTZ,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS "idx_teams_status_0f2c1b" ON "teams" ("status");
CREATE INDEX IF NOT EXISTS "idx_teams_tenant__6b1e4d" ON "teams" ("tenant_id");
COMMENT ON COLUMN "teams"."type" IS 'PROJECT: project\nDEPARTMENT: department\nORGANIZATION: organization\nCOMMUNITY: community\nCUSTOM: custom';
COMMENT ON COLUMN "teams"."status" IS 'DRAFT: draft\nACTIVE: active\nSUSPENDED: suspended\nARCHIVED: archived';
COMMENT ON TABLE "teams" IS 'A collaborative group with a lifecycle state and a polymorphic owner.';
CREATE TABLE IF NOT EXISTS "team_members" (
    "id" UUID NOT NULL PRIMARY KEY,
    "user_type" VARCHAR(100) NOT NULL,
    "user_id" VARCHAR(255) NOT NULL,
    "role" VARCHAR(50) NOT NULL DEFAULT 'member',
    "permissions" JSONB NOT NULL,
    "status" VARCHAR(50) NOT NULL DEFAULT 'active',
    "live_slot" BOOL DEFAULT True,
    "joined_at" TIMESTAMPTZ,
    "last_activity_at" TIMESTAMPTZ,
    "removed_at" TIMESTAMPTZ,
    "removed_by" VARCHAR(255),
    "removal_reason" TEXT,
    "archived_at" TIMESTAMPTZ,
    "tenant_id" VARCHAR(255),
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "team_id" UUID NOT NULL REFERENCES "teams" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_team_member_team_id_5d3a9e" UNIQUE ("team_id", "user_type", "user_id", "live_slot")
);
CREATE INDEX IF NOT EXISTS "idx_team_member_tenant__9a7c2f" ON "team_members" ("tenant_id");
COMMENT ON COLUMN "team_members"."status" IS 'ACTIVE: active\nINACTIVE: inactive\nSUSPENDED: suspended\nREMOVED: removed\nARCHIVED: archived';
COMMENT ON TABLE "team_members" IS 'Join entity linking a principal to a team with a role and permissions.';
CREATE TABLE IF NOT EXISTS "team_invitations" (
    "id" UUID NOT NULL PRIMARY KEY,
    "email" VARCHAR(255) NOT NULL,
    "token" VARCHAR(64) NOT NULL UNIQUE,
    "role" VARCHAR(50) NOT NULL DEFAULT 'member',
    "permissions" JSONB NOT NULL,
    "status" VARCHAR(50) NOT NULL DEFAULT 'pending',
    "pending_slot" BOOL DEFAULT True,
    "message" TEXT,
    "invited_by_type" VARCHAR(100),
    "invited_by_id" VARCHAR(255),
    "accepted_by_type" VARCHAR(100),
    "accepted_by_id" VARCHAR(255),
    "expires_at" TIMESTAMPTZ NOT NULL,
    "accepted_at" TIMESTAMPTZ,
    "rejected_at" TIMESTAMPTZ,
    "cancelled_at" TIMESTAMPTZ,
    "resend_count" INT NOT NULL DEFAULT 0,
    "last_sent_at" TIMESTAMPTZ,
    "tenant_id" VARCHAR(255),
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "team_id" UUID NOT NULL REFERENCES "teams" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_team_invita_team_id_c41e88" UNIQUE ("team_id", "email", "pending_slot")
);
CREATE INDEX IF NOT EXISTS "idx_team_invita_email_3b9f0a" ON "team_invitations" ("email");
CREATE INDEX IF NOT EXISTS "idx_team_invita_expires_7e1d52" ON "team_invitations" ("expires_at");
CREATE INDEX IF NOT EXISTS "idx_team_invita_tenant__2c6a71" ON "team_invitations" ("tenant_id");
COMMENT ON COLUMN "team_invitations"."status" IS 'PENDING: pending\nACCEPTED: accepted\nDECLINED: declined\nCANCELLED: cancelled\nEXPIRED: expired';
COMMENT ON TABLE "team_invitations" IS 'A time-limited, tokenized offer to join a team.';
CREATE TABLE IF NOT EXISTS "team_activity_log" (
    "id" UUID NOT NULL PRIMARY KEY,
    "subject_type" VARCHAR(50) NOT NULL,
    "subject_id" VARCHAR(255) NOT NULL,
    "actor_type" VARCHAR(100),
    "actor_id" VARCHAR(255),
    "action" VARCHAR(100) NOT NULL,
    "description" VARCHAR(255),
    "properties" JSONB NOT NULL,
    "tenant_id" VARCHAR(255),
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS "idx_team_activi_subject_8d4e10" ON "team_activity_log" ("subject_id");
COMMENT ON TABLE "team_activity_log" IS 'Audit row written inside the transaction of every mutating action.';
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        DROP TABLE IF EXISTS "team_activity_log";
        DROP TABLE IF EXISTS "team_invitations";
        DROP TABLE IF EXISTS "team_members";
        DROP TABLE IF EXISTS "teams";"""
