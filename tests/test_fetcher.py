"""Tests for streaming downloads."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from podgrab.archive import ArchiveLedger
from podgrab.exceptions import DownloadError
from podgrab.fetcher import download, download_file
from podgrab.models import DownloadOutcome

URL = "https://cdn.example.com/ep.mp3"


def _mock_response(chunks: list[bytes], content_length: int | None = None) -> MagicMock:
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.headers = {"content-length": str(content_length)} if content_length is not None else {}
    resp.iter_content.return_value = chunks
    resp.raise_for_status.return_value = None
    return resp


class TestDownloadFile:
    def test_writes_file(self, tmp_path):
        out = tmp_path / "sub" / "ep.mp3"
        with patch("podgrab.fetcher.requests.get", return_value=_mock_response([b"abc", b"def"], 6)):
            size = download_file(URL, out)
        assert size == 6
        assert out.read_bytes() == b"abcdef"
        assert not (tmp_path / "sub" / "ep.mp3.tmp").exists()

    def test_sends_plain_user_agent(self, tmp_path):
        with patch("podgrab.fetcher.requests.get", return_value=_mock_response([b"abc"])) as mock_get:
            download_file(URL, tmp_path / "ep.mp3")
        assert mock_get.call_args.kwargs["headers"]["User-Agent"] == "podgrab/0.1"

    def test_retries_then_succeeds(self, tmp_path):
        out = tmp_path / "ep.mp3"
        with patch("podgrab.fetcher.requests.get") as mock_get, patch("podgrab.fetcher.time.sleep") as mock_sleep:
            mock_get.side_effect = [requests.ConnectionError("reset"), _mock_response([b"data"])]
            download_file(URL, out, retries=3)
        assert out.read_bytes() == b"data"
        assert mock_get.call_count == 2
        mock_sleep.assert_called_once_with(1)

    def test_http_error_exhausts_retries(self, tmp_path):
        out = tmp_path / "ep.mp3"
        resp = _mock_response([])
        resp.raise_for_status.side_effect = requests.HTTPError("503")
        with patch("podgrab.fetcher.requests.get", return_value=resp), patch("podgrab.fetcher.time.sleep"):
            with pytest.raises(DownloadError, match="after 2 attempts"):
                download_file(URL, out, retries=2)
        assert not out.exists()
        assert not (tmp_path / "ep.mp3.tmp").exists()

    def test_empty_body(self, tmp_path):
        out = tmp_path / "ep.mp3"
        with patch("podgrab.fetcher.requests.get", return_value=_mock_response([])):
            with pytest.raises(DownloadError, match="Unable to write to file"):
                download_file(URL, out)
        assert not out.exists()

    def test_existing_file_kept_on_failure(self, tmp_path):
        out = tmp_path / "ep.mp3"
        out.write_bytes(b"old")
        with patch("podgrab.fetcher.requests.get", side_effect=requests.Timeout("slow")), patch("podgrab.fetcher.time.sleep"):
            with pytest.raises(DownloadError):
                download_file(URL, out, retries=1)
        assert out.read_bytes() == b"old"


class TestDownload:
    def test_archived_is_skipped(self, tmp_path):
        ledger = ArchiveLedger(tmp_path / "archive.json")
        ledger.insert("key")
        with patch("podgrab.fetcher.requests.get") as mock_get:
            outcome = download(URL, tmp_path / "img.jpg", "ep", key="key", ledger=ledger)
        assert outcome is DownloadOutcome.SKIPPED_ARCHIVED
        mock_get.assert_not_called()

    def test_existing_file_is_skipped_and_archived(self, tmp_path):
        ledger = ArchiveLedger(tmp_path / "archive.json")
        out = tmp_path / "img.jpg"
        out.write_bytes(b"x")
        with patch("podgrab.fetcher.requests.get") as mock_get:
            outcome = download(URL, out, "ep", key="key", ledger=ledger)
        assert outcome is DownloadOutcome.SKIPPED_EXISTS
        mock_get.assert_not_called()
        assert ledger.contains("key")

    def test_override_redownloads(self, tmp_path):
        out = tmp_path / "img.jpg"
        out.write_bytes(b"old")
        with patch("podgrab.fetcher.requests.get", return_value=_mock_response([b"new"])):
            outcome = download(URL, out, "ep", override=True)
        assert outcome is DownloadOutcome.SUCCEEDED
        assert out.read_bytes() == b"new"

    def test_failure_is_not_archived(self, tmp_path):
        ledger = ArchiveLedger(tmp_path / "archive.json")
        with patch("podgrab.fetcher.requests.get", side_effect=requests.ConnectionError("x")), patch("podgrab.fetcher.time.sleep"):
            with pytest.raises(DownloadError):
                download(URL, tmp_path / "img.jpg", "ep", key="key", ledger=ledger)
        assert not ledger.contains("key")
