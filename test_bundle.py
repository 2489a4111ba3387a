from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest import mock

from sessionvault.constants import CODEC_NONE, CODEC_DEFLATE, FLAG_PLAINTEXT, FORMAT_VERSION, BUNDLE_MAGIC
from sessionvault.encryption import ContentCipher
from sessionvault.errors import (
    BuildError,
    ChecksumMismatch,
    CompressionNotSupported,
    DataNotAvailable,
    DecryptionFailed,
    InvalidDataFormat,
    KeyConfigError,
    SessionNotFound,
)
from sessionvault.config import Settings, parse_key, read_key_file
from sessionvault.hashutil import content_checksum
from sessionvault.obfuscate import obfuscate_title, deobfuscate_title
from sessionvault.reader import ArchiveReader, load, load_bundle
from sessionvault.records import Archive, Record, encode_archive, parse_archive
from sessionvault.superblock import SUPERBLOCK_SIZE, pack_superblock
from sessionvault.writer import build_bundle, build_search_index, session_from_mapping, write_archive, write_plain_database


KEY = b"0123456789abcdef0123456789abcdef"
OTHER_KEY = b"fedcba9876543210fedcba9876543210"


def _sample_sessions():
    return [
        {
            "id": "wwdc2021-10183",
            "title": "Build SharePlay experiences",
            "year": 2021,
            "content": "Welcome to the session. Today we explore SharePlay and GroupActivities together. "
            "At 2:15 we set up a SharePlay session for everyone.",
        },
        {
            "id": "wwdc2023-10101",
            "title": "Advanced RealityKit timelines",
            "year": 2023,
            "content": "RealityKit timelines let you sequence animation. Timelines are edited in Reality Composer Pro.",
        },
        {
            "id": "wwdc2024-10144",
            "title": "What's new in SwiftUI",
            "year": 2024,
            "content": "SwiftUI gains new APIs this year.\n\nWe cover layout and animation in depth.",
        },
    ]


def _build(base: Path, sessions=None, index=None, **kwargs) -> Path:
    out = base / "wwdc_bundle.encrypted"
    build_bundle(str(out), sessions or _sample_sessions(), KEY, index, quiet=True, **kwargs)
    return out


class ObfuscationTests(unittest.TestCase):
    def test_title_roundtrip(self):
        titles = [
            "Build SharePlay experiences",
            "What's new in SwiftUI",
            "AUDIO & Video: INTRODUCTION to AVFoundation (2024)",
            "",
            "xyz 123 !?",
        ]
        for t in titles:
            self.assertEqual(deobfuscate_title(obfuscate_title(t)), t)

    def test_only_vowels_substituted(self):
        self.assertEqual(obfuscate_title("Build"), "Bυιld")
        self.assertEqual(obfuscate_title("xyz 123"), "xyz 123")
        self.assertNotIn("a", obfuscate_title("banana"))


class EncryptionTests(unittest.TestCase):
    def test_roundtrip_utf8(self):
        cipher = ContentCipher(KEY)
        for text in ["", "hello", "Ünïcødé ✓ 漢字 🎉", "line\n" * 1000]:
            token = cipher.encrypt(text)
            self.assertEqual(cipher.decrypt(token), text)

    def test_fresh_nonce_per_encryption(self):
        cipher = ContentCipher(KEY)
        self.assertNotEqual(cipher.encrypt("same"), cipher.encrypt("same"))

    def test_wrong_key_fails(self):
        token = ContentCipher(KEY).encrypt("secret transcript")
        with self.assertRaises(DecryptionFailed):
            ContentCipher(OTHER_KEY).decrypt(token)
        self.assertIsNone(ContentCipher(OTHER_KEY).try_decrypt(token))

    def test_tampered_ciphertext_fails(self):
        import base64

        cipher = ContentCipher(KEY)
        raw = bytearray(base64.b64decode(cipher.encrypt("secret transcript")))
        raw[14] ^= 0x01
        with self.assertRaises(DecryptionFailed):
            cipher.decrypt(base64.b64encode(bytes(raw)).decode("ascii"))
        with self.assertRaises(DecryptionFailed):
            cipher.decrypt("not base64 at all!!")
        with self.assertRaises(DecryptionFailed):
            cipher.decrypt("AAAA")

    def test_key_length_enforced(self):
        for bad in (b"", b"short", KEY + b"x", KEY[:31]):
            with self.assertRaises(KeyConfigError):
                ContentCipher(bad)


class KeyConfigTests(unittest.TestCase):
    def test_parse_raw_and_hex(self):
        self.assertEqual(parse_key(KEY.decode("ascii")), KEY)
        self.assertEqual(parse_key(KEY.hex()), KEY)
        with self.assertRaises(KeyConfigError):
            parse_key("too-short")

    def test_settings_from_env(self):
        s = Settings.from_env({"SESSIONVAULT_HOME": "/tmp/vault-home", "SESSIONVAULT_KEY": KEY.hex(), "SESSIONVAULT_JOBS": "3"})
        self.assertEqual(s.home, Path("/tmp/vault-home"))
        self.assertEqual(s.key, KEY)
        self.assertEqual(s.jobs, 3)
        empty = Settings.from_env({"SESSIONVAULT_HOME": "/tmp/vault-home"})
        self.assertIsNone(empty.key)
        with self.assertRaises(KeyConfigError):
            empty.require_key()
        with self.assertRaises(KeyConfigError):
            Settings.from_env({"SESSIONVAULT_KEY": "x" * 31})

    def test_key_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            good = Path(tmp) / "good.key"
            good.write_text(KEY.hex() + "\n")
            self.assertEqual(read_key_file(str(good)), KEY)
            binary = Path(tmp) / "binary.key"
            binary.write_bytes(b"\xff" * 32)
            with self.assertRaises(KeyConfigError):
                read_key_file(str(binary))
            with self.assertRaises(KeyConfigError):
                read_key_file(str(Path(tmp) / "absent.key"))


class RecordCodecTests(unittest.TestCase):
    def _record(self, **over):
        d = {"id": "a", "title": "t", "year": 2024, "content": "c", "checksum": "00"}
        d.update(over)
        return d

    def _envelope(self, **over):
        env = {"version": FORMAT_VERSION, "sessions": [self._record()], "search_index": {"t": ["a"]}, "metadata": {}}
        env.update(over)
        return json.dumps(env).encode("utf-8")

    def test_roundtrip(self):
        arc = Archive(
            records=[Record(id="a", title="tιtlε", year=2023, content="xx", checksum="ff", excerpt="ex", url="u")],
            search_index={"title": frozenset({"a"})},
            metadata={"total_sessions": 1},
        )
        back = parse_archive(encode_archive(arc))
        self.assertEqual(back.records, arc.records)
        self.assertEqual(back.search_index, arc.search_index)
        self.assertEqual(back.metadata, arc.metadata)
        self.assertEqual(back.format_version, FORMAT_VERSION)

    def test_unknown_fields_tolerated(self):
        data = json.dumps({
            "version": FORMAT_VERSION,
            "sessions": [self._record(speakers=["x"], duration=30)],
            "search_index": {},
            "future_field": {"a": 1},
        }).encode("utf-8")
        arc = parse_archive(data)
        self.assertEqual(len(arc), 1)
        self.assertEqual(arc.metadata, {})

    def test_version_mismatch(self):
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(version=2))

    def test_missing_mandatory_fields(self):
        for field in ("id", "title", "year", "content", "checksum"):
            rec = self._record()
            del rec[field]
            with self.assertRaises(InvalidDataFormat):
                parse_archive(self._envelope(sessions=[rec], search_index={}))
        for field in ("version", "sessions", "search_index"):
            env = json.loads(self._envelope())
            del env[field]
            with self.assertRaises(InvalidDataFormat):
                parse_archive(json.dumps(env).encode("utf-8"))

    def test_wrong_types(self):
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(sessions=[self._record(year="2024")]))
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(sessions=[self._record(year=True)]))
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(sessions={"a": 1}))
        with self.assertRaises(InvalidDataFormat):
            parse_archive(b"\xff\xfe not json")

    def test_index_integrity_and_unique_ids(self):
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(search_index={"t": ["missing"]}))
        with self.assertRaises(InvalidDataFormat):
            parse_archive(self._envelope(sessions=[self._record(), self._record()]))


class BuildPipelineTests(unittest.TestCase):
    def test_build_and_load(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with open(out, "rb") as fh:
                self.assertEqual(fh.read(8), BUNDLE_MAGIC)
            raw = out.read_bytes()
            self.assertNotIn(b"SharePlay", raw)
            self.assertNotIn("Build SharePlay".encode("utf-8"), raw)

            arc = load(str(out))
            self.assertEqual(len(arc), 3)
            rec = arc.get("wwdc2021-10183")
            self.assertNotEqual(rec.title, "Build SharePlay experiences")
            self.assertEqual(rec.display_title, "Build SharePlay experiences")
            self.assertIsNone(rec.excerpt)
            self.assertIn("shareplay", arc.search_index)
            self.assertEqual(arc.metadata["total_sessions"], 3)
            self.assertEqual(arc.metadata["years_range"], [2021, 2024])

    def test_checksum_stable_after_decrypt(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            by_id = {s["id"]: s["content"] for s in _sample_sessions()}
            with ArchiveReader(str(out), key=KEY) as reader:
                for rec in reader.records():
                    plain = reader.require_content(rec)
                    self.assertEqual(plain, by_id[rec.id])
                    self.assertEqual(rec.checksum, content_checksum(plain))

    def test_report_sizes(self):
        with tempfile.TemporaryDirectory() as tmp:
            report = build_bundle(str(Path(tmp) / "b.encrypted"), _sample_sessions(), KEY, None, quiet=True)
            self.assertEqual(report.records_written, 3)
            self.assertEqual(report.records_skipped, 0)
            self.assertGreater(report.plaintext_size, 0)
            self.assertEqual(report.compressed_size, os.path.getsize(report.path) - SUPERBLOCK_SIZE)
            self.assertLess(report.compression_ratio, 100.0)

    def test_invalid_record_skipped(self):
        sessions = _sample_sessions()
        sessions.append({"id": "wwdc2022-1", "title": "No content", "year": 2022})
        sessions.append({"id": "wwdc2022-2", "title": "Bad year", "year": "2022", "content": "x"})
        with tempfile.TemporaryDirectory() as tmp:
            err = io.StringIO()
            with redirect_stderr(err):
                report = build_bundle(
                    str(Path(tmp) / "b.encrypted"),
                    sessions,
                    KEY,
                    {"content": ["wwdc2022-1"], "swiftui": ["wwdc2024-10144"]},
                    quiet=True,
                )
            self.assertEqual(report.records_written, 3)
            self.assertEqual(report.records_skipped, 2)
            self.assertIn("wwdc2022-1", err.getvalue())
            arc = load(report.path)
            self.assertIsNone(arc.get("wwdc2022-1"))
            self.assertNotIn("content", arc.search_index)
            self.assertEqual(arc.search_index["swiftui"], frozenset({"wwdc2024-10144"}))

    def test_bad_key_is_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "b.encrypted"
            with self.assertRaises(KeyConfigError):
                build_bundle(str(out), _sample_sessions(), b"short-key", None, quiet=True)
            self.assertFalse(out.exists())

    def test_encryption_failure_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "b.encrypted"
            with mock.patch("sessionvault.writer.ContentCipher.encrypt", side_effect=ValueError("boom")):
                with self.assertRaises(BuildError):
                    build_bundle(str(out), _sample_sessions(), KEY, None, quiet=True)
            self.assertFalse(out.exists())
            self.assertEqual(os.listdir(tmp), [])

    def test_public_excerpts(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp), include_excerpts=True)
            rec = load(str(out)).get("wwdc2023-10101")
            self.assertTrue(rec.excerpt.startswith("RealityKit timelines"))

    def test_derived_index(self):
        sessions = [session_from_mapping(s) for s in _sample_sessions()]
        index = build_search_index(sessions)
        self.assertEqual(index["shareplay"], {"wwdc2021-10183"})
        self.assertIn("wwdc2024-10144", index["animation"])
        self.assertNotIn("at", index)


class LoadPipelineTests(unittest.TestCase):
    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(DataNotAvailable):
                load(str(Path(tmp) / "nope.encrypted"))

    def test_bad_magic(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "x.encrypted"
            p.write_bytes(b"NOTABUNDLE" + b"\x00" * 100)
            with self.assertRaises(InvalidDataFormat):
                load(str(p))

    def test_header_crc_mismatch(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            data = bytearray(out.read_bytes())
            data[12] ^= 0x01  # flags field
            out.write_bytes(bytes(data))
            with self.assertRaisesRegex(InvalidDataFormat, "CRC"):
                load(str(out))

    def test_truncated(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            data = out.read_bytes()
            out.write_bytes(data[:-10])
            with self.assertRaises(InvalidDataFormat):
                load(str(out))

    def test_corrupt_compressed_payload(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            data = bytearray(out.read_bytes())
            mid = SUPERBLOCK_SIZE + (len(data) - SUPERBLOCK_SIZE) // 2
            for i in range(mid, mid + 8):
                data[i] ^= 0xFF
            out.write_bytes(bytes(data))
            with self.assertRaises(CompressionNotSupported):
                load(str(out))

    def test_unknown_codec(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "x.encrypted"
            payload = b"{}"
            p.write_bytes(pack_superblock(99, 0, payload_len=len(payload), raw_len=len(payload)) + payload)
            with self.assertRaises(CompressionNotSupported):
                load(str(p))

    def test_version_mismatch_in_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "x.encrypted"
            payload = json.dumps({"version": 99, "sessions": [], "search_index": {}}).encode("utf-8")
            p.write_bytes(pack_superblock(CODEC_NONE, 0, payload_len=len(payload), raw_len=len(payload)) + payload)
            with self.assertRaises(InvalidDataFormat):
                load(str(p))


class ReaderTests(unittest.TestCase):
    def test_lazy_decrypt_and_cache(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with ArchiveReader(str(out), key=KEY) as reader:
                with mock.patch.object(reader.cipher, "decrypt", wraps=reader.cipher.decrypt) as spy:
                    rec = reader.get("wwdc2024-10144")
                    self.assertEqual(spy.call_count, 0)
                    first = reader.decrypt(rec)
                    second = reader.decrypt(rec)
                    self.assertEqual(first, second)
                    self.assertEqual(spy.call_count, 1)

    def test_no_key_returns_none(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with ArchiveReader(str(out)) as reader:
                self.assertFalse(reader.can_decrypt)
                rec = reader.get("wwdc2024-10144")
                self.assertIsNone(reader.decrypt(rec))
                with self.assertRaises(DecryptionFailed):
                    reader.require_content(rec)

    def test_wrong_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with ArchiveReader(str(out), key=OTHER_KEY) as reader:
                rec = reader.get("wwdc2024-10144")
                self.assertIsNone(reader.decrypt(rec))
                with self.assertRaises(DecryptionFailed):
                    reader.session("wwdc2024-10144")
                with self.assertRaises(SessionNotFound):
                    reader.session("wwdc1999-1")

    def test_checksum_mismatch_reported(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "bad.encrypted"
            cipher = ContentCipher(KEY)
            rec = Record(id="r1", title="T", year=2024, content=cipher.encrypt("real text"), checksum="00" * 32)
            write_archive(str(p), Archive(records=[rec], search_index={}), codec_id=CODEC_DEFLATE)
            with ArchiveReader(str(p), key=KEY) as reader:
                err = io.StringIO()
                with redirect_stderr(err):
                    self.assertIsNone(reader.decrypt(reader.get("r1")))
                self.assertIn("Checksum mismatch", err.getvalue())
            with ArchiveReader(str(p), key=KEY) as reader:
                with self.assertRaises(ChecksumMismatch):
                    reader.require_content(reader.get("r1"))

    def test_plain_database(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with ArchiveReader(str(out), key=KEY) as reader:
                plain = {r.id: reader.require_content(r) for r in reader.records()}
                db = Path(tmp) / "wwdc.db"
                write_plain_database(str(db), reader.archive, plain)
            bundle = load_bundle(str(db))
            self.assertTrue(bundle.superblock.flags & FLAG_PLAINTEXT)
            self.assertIn(b"SwiftUI gains new APIs", db.read_bytes())
            with ArchiveReader(str(db)) as reader:
                self.assertTrue(reader.can_decrypt)
                rec, content = reader.session("wwdc2024-10144")
                self.assertEqual(rec.display_title, "What's new in SwiftUI")
                self.assertTrue(content.startswith("SwiftUI gains"))

    def test_statistics_and_years(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = _build(Path(tmp))
            with ArchiveReader(str(out)) as reader:
                stats = reader.statistics()
                self.assertEqual(stats["total_sessions"], 3)
                self.assertEqual(stats["years"], [2021, 2024])
                self.assertEqual(stats["content_key"], "missing")
                self.assertEqual(stats["codec"], "deflate")
                self.assertEqual([r.id for r in reader.by_year(2023)], ["wwdc2023-10101"])


if __name__ == "__main__":
    unittest.main()
