#!/usr/bin/env python3
"""
Create the FILES and STORAGE_INFO tables in Snowflake.

Usage:
    python scripts/create_tables.py            # create if missing
    python scripts/create_tables.py --dry-run  # print the DDL only

Requires:
    - .env file with Snowflake credentials
"""

import sys
from pathlib import Path

# Add the project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DDL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS files (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR NOT NULL,
        type VARCHAR(16) NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'COMPLETE',
        mime_type VARCHAR NOT NULL,
        file_size NUMBER NOT NULL,
        file_hash VARCHAR,
        width NUMBER,
        height NUMBER,
        duration FLOAT,
        encoding VARCHAR,
        metadata VARIANT,
        year NUMBER(4) NOT NULL,
        month NUMBER(2) NOT NULL,
        branch_id VARCHAR,
        access_count NUMBER NOT NULL DEFAULT 0,
        version NUMBER NOT NULL DEFAULT 1,
        created_at TIMESTAMP_TZ NOT NULL,
        updated_at TIMESTAMP_TZ NOT NULL,
        deleted_at TIMESTAMP_TZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS storage_info (
        id VARCHAR(36) PRIMARY KEY,
        file_id VARCHAR(36) NOT NULL UNIQUE REFERENCES files(id),
        provider VARCHAR(16) NOT NULL,
        storage_file_id VARCHAR NOT NULL,
        storage_url VARCHAR,
        url_issued_at TIMESTAMP_TZ,
        storage_metadata VARIANT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP_TZ NOT NULL,
        updated_at TIMESTAMP_TZ NOT NULL
    )
    """,
]


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Create MediaVault tables in Snowflake')
    parser.add_argument('--dry-run', action='store_true', help='Print DDL, don\'t execute')
    args = parser.parse_args()

    if args.dry_run:
        for statement in DDL_STATEMENTS:
            print(statement.strip() + ";\n")
        return

    from mediavault.config import get_settings
    from mediavault.infrastructure.snowflake.client import SnowflakeConfig, get_snowflake_connection

    settings = get_settings()
    config = SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )

    with get_snowflake_connection(config) as conn:
        cursor = conn.cursor()
        try:
            for statement in DDL_STATEMENTS:
                cursor.execute(statement)
            conn.commit()
        finally:
            cursor.close()

    print(f"Created tables in {settings.snowflake_database}.{settings.snowflake_schema}")


if __name__ == '__main__':
    main()
