import os

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SERVICE_MODE"] = "mock"

import pytest
from sqlalchemy.orm import sessionmaker

from feynbrain import models  # noqa: F401  registers the kv_store table
from feynbrain.db import Base, make_engine
from feynbrain.schemas import UploadedDocument
from feynbrain.store import DocumentStore, KeyValueStore, SessionStore


SOURCE_TEXT = (
	"Photosynthesis is the process plants use to convert light energy into chemical energy. "
	"Chlorophyll absorbs sunlight, and the plant combines carbon dioxide and water to make glucose, "
	"releasing oxygen as a byproduct."
)


@pytest.fixture
def session_factory():
	engine = make_engine("sqlite://")
	Base.metadata.create_all(bind=engine)
	yield sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
	engine.dispose()


@pytest.fixture
def kv(session_factory):
	return KeyValueStore(session_factory)


@pytest.fixture
def session_store(kv):
	return SessionStore(kv)


@pytest.fixture
def document_store(kv):
	return DocumentStore(kv)


@pytest.fixture
def document():
	return UploadedDocument(
		id="doc-1",
		name="photosynthesis.txt",
		size=len(SOURCE_TEXT),
		type="text/plain",
		content=SOURCE_TEXT,
		uploaded_at=1_700_000_000_000,
	)
