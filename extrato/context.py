# extrato/context.py
# Role: Application context. Holds the settings, the database engine, the
#       session factory and the LLM client, built once per process (or per test).

from dataclasses import dataclass
from typing import Any, Optional

from openai import OpenAI
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from db import create_db_engine, init_db, make_session_factory
from extrato.settings import Settings


@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    SessionLocal: sessionmaker
    # OpenAI client (or a test double exposing .responses.create); None when no key is configured
    llm_client: Optional[Any] = None


def make_llm_client(settings: Settings) -> Optional[OpenAI]:
    if not settings.openai_api_key:
        return None
    return OpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.classifier_timeout_seconds,
        max_retries=settings.classifier_max_retries,
    )


def build_context(settings: Settings, llm_client: Optional[Any] = None, create_tables: bool = True) -> AppContext:
    engine = create_db_engine(settings.database_url)
    if create_tables:
        init_db(engine)

    return AppContext(
        settings=settings,
        engine=engine,
        SessionLocal=make_session_factory(engine),
        llm_client=llm_client if llm_client is not None else make_llm_client(settings),
    )
