"""Tests for metadata sidecars and episode listings."""

import json

import pytest
from lxml import etree

from podgrab.archive import ArchiveLedger
from podgrab.exceptions import MetadataError
from podgrab.metadata import (
    build_xml,
    entry_rows,
    format_entry_list,
    write_feed_meta,
    write_item_meta,
    write_meta,
)
from podgrab.models import DownloadOutcome, Enclosure, Entry, Feed, SelectedEntry

RAW_GUID = {"guid": [{"$": {"isPermaLink": "false"}, "_": "ep-1"}]}


def _make_entry() -> Entry:
    return Entry(
        title="Episode 1",
        pub_date="Mon, 01 Jan 2024 00:00:00 GMT",
        guid="ep-1",
        creator="Jane",
        content_snippet="Hello",
        enclosure=Enclosure("https://cdn.example.com/1.mp3", "audio/mpeg", "100"),
        raw=RAW_GUID,
    )


class TestWriteMeta:
    def test_json(self, tmp_path):
        path = tmp_path / "ep.meta.json"
        write_meta(path, {"title": "A"})
        assert json.loads(path.read_text()) == {"title": "A"}
        assert path.read_text() == json.dumps({"title": "A"}, indent=4)

    def test_xml(self, tmp_path):
        path = tmp_path / "ep.meta.xml"
        write_meta(path, {"title": "A", "tags": ["x", "y"]})
        root = etree.fromstring(path.read_bytes())
        assert root.tag == "root"
        assert root.findtext("title") == "A"
        assert [t.text for t in root.findall("tags")] == ["x", "y"]

    def test_invalid_format(self, tmp_path):
        with pytest.raises(MetadataError, match="Invalid metadata path"):
            write_meta(tmp_path / "ep.meta.yaml", {})


class TestBuildXml:
    def test_single_mapping_becomes_root(self):
        root = etree.fromstring(build_xml({"channel": {"title": "Show"}}))
        assert root.tag == "channel"
        assert root.findtext("title") == "Show"

    def test_attributes_and_text(self):
        root = etree.fromstring(build_xml({"guid": [{"$": {"isPermaLink": "false"}, "_": "ep-1"}]}))
        guid = root.find("guid")
        assert guid.get("isPermaLink") == "false"
        assert guid.text == "ep-1"

    def test_unsafe_tag_names(self):
        root = etree.fromstring(build_xml({"itunes:episode": "1", "1st": "x"}))
        assert root.findtext("itunes_episode") == "1"
        assert root.findtext("_1st") == "x"

    def test_declaration(self):
        assert build_xml({"a": "b"}).startswith(b"<?xml version='1.0' encoding='UTF-8' standalone='yes'?>")


class TestSidecars:
    def test_item_meta_projection(self, tmp_path):
        path = tmp_path / "ep.meta.json"
        outcome = write_item_meta("ep", path, _make_entry(), ["title", "enclosure.url"])
        assert outcome is DownloadOutcome.SUCCEEDED
        assert json.loads(path.read_text()) == {
            "title": "Episode 1",
            "enclosure": {"url": "https://cdn.example.com/1.mp3"},
            "raw": RAW_GUID,
        }

    def test_feed_meta(self, tmp_path):
        path = tmp_path / "Show.meta.json"
        feed = Feed(title="Show", description="About", entries=(_make_entry(),))
        write_feed_meta(path, feed, ["title", "description", "entries"])
        assert json.loads(path.read_text()) == {"title": "Show", "description": "About"}

    def test_existing_file_not_overwritten(self, tmp_path):
        path = tmp_path / "ep.meta.json"
        path.write_text("{}")
        outcome = write_item_meta("ep", path, _make_entry(), ["title"])
        assert outcome is DownloadOutcome.SKIPPED_EXISTS
        assert path.read_text() == "{}"

    def test_override(self, tmp_path):
        path = tmp_path / "ep.meta.json"
        path.write_text("{}")
        write_item_meta("ep", path, _make_entry(), ["title"], override=True)
        assert json.loads(path.read_text()) == {"title": "Episode 1", "raw": RAW_GUID}

    def test_archive(self, tmp_path):
        ledger = ArchiveLedger(tmp_path / "archive.json")
        path = tmp_path / "ep.meta.json"

        first = write_item_meta("ep", path, _make_entry(), ["title"], key="k", ledger=ledger)
        path.unlink()
        second = write_item_meta("ep", path, _make_entry(), ["title"], key="k", ledger=ledger)

        assert first is DownloadOutcome.SUCCEEDED
        assert second is DownloadOutcome.SKIPPED_ARCHIVED
        assert not path.exists()


class TestListing:
    def _rows(self):
        entries = (
            Entry(title="Second", pub_date="Tue"),
            Entry(title="First", pub_date="Mon"),
        )
        feed = Feed(entries=entries)
        selected = [SelectedEntry(entry=e, original_index=i) for i, e in enumerate(entries)]
        return entry_rows(feed, selected)

    def test_rows(self):
        assert self._rows() == [
            {"episode_num": 2, "title": "Second", "pub_date": "Tue"},
            {"episode_num": 1, "title": "First", "pub_date": "Mon"},
        ]

    def test_json(self):
        assert json.loads(format_entry_list(self._rows(), "json"))[0]["title"] == "Second"

    def test_table(self):
        lines = format_entry_list(self._rows()).splitlines()
        assert lines[0].split() == ["episode_num", "title", "pub_date"]
        assert set(lines[1].strip()) == {"\u2500"}
        assert lines[2].split() == ["2", "Second", "Tue"]
        assert lines[3].split() == ["1", "First", "Mon"]
        assert len(lines) == 4
        assert all(line == line.rstrip() for line in lines)

    def test_table_keeps_brackets_in_titles(self):
        rows = [{"episode_num": 1, "title": "[Bonus] Live", "pub_date": None}]
        lines = format_entry_list(rows).splitlines()
        assert lines[2].split() == ["1", "[Bonus]", "Live"]
