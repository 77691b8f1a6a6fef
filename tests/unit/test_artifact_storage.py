from __future__ import annotations

import pytest

from receipts.clients.storage import FilesystemStorageClient
from receipts.clients.stub import StubStorageClient
from receipts.domain.artifacts import receipt_artifact_key
from receipts.lib.artifacts.codecs import decode_source, encode_rows_csv
from receipts.lib.artifacts.factory import build_artifact_repository
from receipts.lib.artifacts.repository import StorageArtifactRepository


@pytest.mark.unit
def test_factory_builds_storage_backed_repository() -> None:
    repository = build_artifact_repository(storage=StubStorageClient())
    assert isinstance(repository, StorageArtifactRepository)


@pytest.mark.unit
def test_receipt_keys_keep_member_id_in_one_path_segment() -> None:
    assert receipt_artifact_key(member_id="M1", period=2024) == "receipts/M1/2024.pdf"
    assert receipt_artifact_key(member_id="../A 1", period=2024) == "receipts/..%2FA%201/2024.pdf"


@pytest.mark.unit
def test_sources_and_receipts_round_trip_through_storage() -> None:
    storage = StubStorageClient()
    repository = build_artifact_repository(storage=storage)

    source_key = repository.save_source(job_id="job_1", csv_text="member_id\nM1\n")
    receipt_key = repository.save_receipt(member_id="M1", period=2024, payload=b"%PDF-1")

    assert source_key == "uploads/job_1.csv"
    assert receipt_key == "receipts/M1/2024.pdf"
    assert repository.load_source(source_key="s3://uploads/job_1.csv") == "member_id\nM1\n"
    assert repository.load_receipt(member_id="M1", period=2024) == b"%PDF-1"
    with pytest.raises(KeyError):
        repository.load_receipt(member_id="M2", period=2024)


@pytest.mark.unit
def test_stub_storage_rejects_unknown_prefixes() -> None:
    with pytest.raises(ValueError, match="allowed prefix"):
        StubStorageClient().put_bytes(key="tmp/file.bin", payload=b"x")


@pytest.mark.unit
def test_filesystem_storage_writes_under_root(tmp_path) -> None:
    storage = FilesystemStorageClient(root=tmp_path)

    ref = storage.put_bytes(key="receipts/M1/2024.pdf", payload=b"%PDF")

    assert ref == "file://receipts/M1/2024.pdf"
    assert (tmp_path / "receipts" / "M1" / "2024.pdf").read_bytes() == b"%PDF"
    assert storage.get_bytes(key="receipts/M1/2024.pdf") == b"%PDF"
    with pytest.raises(KeyError):
        storage.get_bytes(key="receipts/M2/2024.pdf")
    with pytest.raises(ValueError):
        storage.put_bytes(key="uploads/../../escape.csv", payload=b"x")


@pytest.mark.unit
def test_source_codec_strips_bom_and_rows_codec_quotes_cells() -> None:
    assert decode_source("\ufeffmember_id\n".encode("utf-8")) == "member_id\n"
    assert encode_rows_csv(header=["a", "b"], rows=[{"a": "x,y", "b": 'q"t', "c": "ignored"}]) == (
        'a,b\n"x,y","q""t"\n'
    )
