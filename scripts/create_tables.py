#!/usr/bin/env python3
"""
Clinsight - Embedding Index Table Creation Script
Enables the pgvector extension and creates the patient_embeddings table
"""

import sys

from sqlalchemy import create_engine, text as sql_text
from clinsight.models import Base
from clinsight.config import settings


def create_all_tables():
    """Create the embedding index tables"""
    print("="*60)
    print("Clinsight - Embedding Index Table Creation")
    print("="*60)

    db_url = settings.get_database_url(sync=True)
    print("\nConnecting to database...")
    print(f"URL: {db_url.split('@')[1] if '@' in db_url else 'hidden'}")

    try:
        engine = create_engine(db_url, echo=settings.database_echo)

        with engine.begin() as connection:
            print("\nEnabling pgvector extension...")
            connection.execute(sql_text("CREATE EXTENSION IF NOT EXISTS vector"))

        print("Creating tables...")
        Base.metadata.create_all(engine)

        print("\n" + "="*60)
        print("✓ All tables created successfully!")
        print("="*60)

        print("\nTables created:")
        for table in Base.metadata.sorted_tables:
            print(f"  - {table.name}")

        return 0

    except Exception as e:
        print(f"\n✗ Error creating tables: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(create_all_tables())
