"""Proof certificate rendering."""

import hashlib

from voidledger.certificate import certificate_filename, format_timestamp, render_certificate


def test_filename_uses_hash_prefix(engine, alice):
    proof = engine.create_proof(alice, hashlib.sha256(b"doc").digest())
    assert certificate_filename(proof) == f"void-proof-{proof.hash.hex()[:8]}.pdf"


def test_timestamp_is_utc():
    assert format_timestamp(0) == "January 01, 1970 00:00:00 UTC"


def test_render_writes_pdf(engine, alice, tmp_path):
    digest = hashlib.sha256(b"doc").digest()
    proof = engine.create_proof(alice, digest)
    address, _ = engine.proof_address(digest)

    out = render_certificate(proof, address, engine.space.program_id, tmp_path / "out" / "cert.pdf")

    assert out == tmp_path / "out" / "cert.pdf"
    data = out.read_bytes()
    assert data.startswith(b"%PDF")
    assert len(data) > 1000
