from __future__ import annotations

from pathlib import Path

import pytest

from reelsearch.backends.catalog import CatalogAdapter
from reelsearch.backends.faiss_catalog import FaissCatalogAdapter
from reelsearch.backends.registry import build_adapter, build_adapters
from reelsearch.hybrid.config import (
    DEFAULT_TIMEOUT_SECONDS,
    AggregatorSettings,
    BackendSpec,
    parse_backend_specs,
)
from reelsearch.hybrid.models import Weights


def test_settings_defaults_from_empty_environment() -> None:
    settings = AggregatorSettings.from_env({})

    assert settings.timeout_seconds == DEFAULT_TIMEOUT_SECONDS
    assert settings.embedding_retries == 1
    assert settings.default_weights == Weights(0.7, 0.3)
    assert [spec.backend_id for spec in settings.backends] == ["main"]
    assert settings.backends[0].kind == "catalog"


def test_settings_read_overrides() -> None:
    settings = AggregatorSettings.from_env(
        {
            "REELSEARCH_TIMEOUT_SECONDS": "10",
            "REELSEARCH_EMBEDDING_TIMEOUT_SECONDS": "2.5",
            "REELSEARCH_EMBEDDING_RETRIES": "0",
            "REELSEARCH_VECTOR_WEIGHT": "0.5",
            "REELSEARCH_KEYWORD_WEIGHT": "0.5",
            "REELSEARCH_BACKENDS": "main=catalog:data/main.db, back=faiss:data/back.db:data/back.faiss",
        }
    )

    assert settings.timeout_seconds == 10.0
    assert settings.embedding_timeout_seconds == 2.5
    assert settings.embedding_retries == 0
    assert settings.default_weights == Weights(0.5, 0.5)
    assert settings.backends[1] == BackendSpec(
        backend_id="back",
        kind="faiss",
        db_path=Path("data/back.db"),
        index_path=Path("data/back.faiss"),
    )
    assert settings.describe()["backends"]["back"]["index_path"] == str(Path("data/back.faiss"))


@pytest.mark.parametrize(
    ("environ", "variable"),
    [
        ({"REELSEARCH_TIMEOUT_SECONDS": "soon"}, "REELSEARCH_TIMEOUT_SECONDS"),
        ({"REELSEARCH_TIMEOUT_SECONDS": "0"}, "REELSEARCH_TIMEOUT_SECONDS"),
        ({"REELSEARCH_EMBEDDING_RETRIES": "-1"}, "REELSEARCH_EMBEDDING_RETRIES"),
        ({"REELSEARCH_VECTOR_WEIGHT": "1.2"}, "REELSEARCH_VECTOR_WEIGHT"),
        ({"REELSEARCH_KEYWORD_WEIGHT": ""}, "REELSEARCH_KEYWORD_WEIGHT"),
        ({"REELSEARCH_BACKENDS": " , "}, "REELSEARCH_BACKENDS"),
    ],
)
def test_settings_reject_invalid_values(environ: dict[str, str], variable: str) -> None:
    with pytest.raises(ValueError, match=variable):
        AggregatorSettings.from_env(environ)


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("main", "id=kind"),
        ("main=mongo:data.db", "Unknown backend kind"),
        ("main=catalog", "missing a database path"),
        ("back=faiss:back.db", "needs an index path"),
        ("main=catalog:main.db:main.faiss", "does not take an index path"),
    ],
)
def test_backend_spec_rejects_malformed_descriptors(raw: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        BackendSpec.parse(raw)


def test_backend_spec_keeps_drive_letters_in_paths() -> None:
    catalog = BackendSpec.parse(r"main=catalog:C:\data\main.db")
    faiss_backed = BackendSpec.parse(r"back=faiss:D:\data\back.db:D:/indexes/back.faiss")
    posix = BackendSpec.parse("back=faiss:/srv/back.db:/srv/back.faiss")

    assert str(catalog.db_path) == str(Path(r"C:\data\main.db"))
    assert catalog.index_path is None
    assert str(faiss_backed.db_path) == str(Path(r"D:\data\back.db"))
    assert str(faiss_backed.index_path) == str(Path("D:/indexes/back.faiss"))
    assert posix.db_path == Path("/srv/back.db")
    assert posix.index_path == Path("/srv/back.faiss")


def test_duplicate_backend_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate backend id"):
        parse_backend_specs("main=catalog:a.db,main=catalog:b.db")


def test_registry_builds_adapter_per_kind(tmp_path: Path) -> None:
    specs = parse_backend_specs(
        f"main=catalog:{tmp_path / 'main.db'},back=faiss:{tmp_path / 'back.db'}:{tmp_path / 'back.faiss'}"
    )

    adapters = build_adapters(specs, dimension=3)

    assert isinstance(adapters[0], CatalogAdapter)
    assert isinstance(adapters[1], FaissCatalogAdapter)
    assert adapters[1].supports_native_hybrid is True
    assert [adapter.backend_id for adapter in adapters] == ["main", "back"]

    with pytest.raises(ValueError, match="Unknown backend kind"):
        build_adapter(BackendSpec(backend_id="x", kind="mongo", db_path=tmp_path / "x.db"), dimension=3)
