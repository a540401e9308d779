"""
PostgreSQL schema for the metadata store.

The metadata store is the single source of truth for existence and status,
so the uniqueness and visibility rules live here as constraints.
"""

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id        TEXT PRIMARY KEY,
        username       TEXT NOT NULL,
        email          TEXT NOT NULL,
        full_name      TEXT NOT NULL,
        password_hash  TEXT NOT NULL,
        is_admin       BOOLEAN NOT NULL DEFAULT FALSE,
        birth_date     DATE,
        avatar_ref     JSONB,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT users_username_key UNIQUE (username),
        CONSTRAINT users_email_key UNIQUE (email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS datasets (
        dataset_id          TEXT PRIMARY KEY,
        owner_user_id       TEXT NOT NULL REFERENCES users(user_id),
        owner_username      TEXT NOT NULL,
        dataset_name        TEXT NOT NULL,
        description         TEXT NOT NULL DEFAULT '',
        tags                TEXT[] NOT NULL DEFAULT '{}',
        status              TEXT NOT NULL DEFAULT 'pending',
        is_public           BOOLEAN NOT NULL DEFAULT FALSE,
        file_references     JSONB NOT NULL DEFAULT '[]',
        header_photo_ref    JSONB,
        tutorial_video_ref  JSONB,
        parent_dataset_id   TEXT,
        download_count      INTEGER NOT NULL DEFAULT 0,
        vote_count          INTEGER NOT NULL DEFAULT 0,
        comment_count       INTEGER NOT NULL DEFAULT 0,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        reviewed_at         TIMESTAMPTZ,
        reviewed_by         TEXT,
        review_comment      TEXT,
        CONSTRAINT datasets_owner_name_key UNIQUE (owner_user_id, dataset_name),
        CONSTRAINT datasets_status_check CHECK (status IN ('pending', 'approved', 'rejected')),
        CONSTRAINT datasets_public_requires_approval CHECK (NOT is_public OR status = 'approved')
    )
    """,
    "CREATE INDEX IF NOT EXISTS datasets_status_idx ON datasets (status, created_at)",
    "CREATE INDEX IF NOT EXISTS datasets_parent_idx ON datasets (parent_dataset_id)",
    """
    CREATE TABLE IF NOT EXISTS comments (
        comment_id         TEXT PRIMARY KEY,
        dataset_id         TEXT NOT NULL REFERENCES datasets(dataset_id),
        author_user_id     TEXT NOT NULL,
        author_username    TEXT NOT NULL,
        parent_comment_id  TEXT,
        content            TEXT NOT NULL,
        is_active          BOOLEAN NOT NULL DEFAULT TRUE,
        created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
        disabled_at        TIMESTAMPTZ,
        disabled_by        TEXT,
        enabled_at         TIMESTAMPTZ,
        enabled_by         TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS comments_dataset_idx ON comments (dataset_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS votes (
        vote_id            TEXT PRIMARY KEY,
        target_dataset_id  TEXT NOT NULL REFERENCES datasets(dataset_id),
        voter_user_id      TEXT NOT NULL,
        rating             SMALLINT NOT NULL,
        created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT votes_dataset_voter_key UNIQUE (target_dataset_id, voter_user_id),
        CONSTRAINT votes_rating_check CHECK (rating BETWEEN 1 AND 5)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        message_id     TEXT PRIMARY KEY,
        from_user_id   TEXT NOT NULL REFERENCES users(user_id),
        from_username  TEXT NOT NULL,
        to_user_id     TEXT NOT NULL REFERENCES users(user_id),
        content        TEXT NOT NULL,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT messages_not_self CHECK (from_user_id <> to_user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS messages_pair_idx ON messages (from_user_id, to_user_id, created_at)",
]
