"""Shared fixtures."""

import io

import pandas as pd
import pytest

from ingest.delimited import KeywordRecord


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """Point the SQLite layer at a throwaway database file."""
    path = tmp_path / "test.db"
    monkeypatch.setattr("storage.db.DB_PATH", str(path))
    return path


@pytest.fixture
def make_record():
    def _make(keyword, position=None, url="N/A", volume=None, difficulty=None, opportunity=None, intent="N/A"):
        return KeywordRecord(
            keyword=keyword,
            position=position,
            url=url,
            volume=volume,
            difficulty=difficulty,
            opportunity=opportunity,
            intent=intent,
        )
    return _make


@pytest.fixture
def make_workbook():
    """Build .xlsx bytes from {sheet name: list of rows}."""
    def _make(sheets: dict) -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            for name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
        return buffer.getvalue()
    return _make


PRIMARY_CSV = (
    "Keyword,Pos,URL,Volume,Keyword Difficulty,Keyword Opportunity,Intent\n"
    "divano letto,2,https://mio.it/divani-letto,1200,40,70,commercial\n"
    "poltrona relax,8,https://mio.it/poltrone,500,35,50,commercial\n"
    "tavolo allungabile,25,https://mio.it/tavoli,900,20,80,transactional\n"
)

COMPETITOR_CSV = (
    "Keyword;Pos;URL;Volume;KD\n"
    "divano letto;1;https://rivale.it/divani;1200;40\n"
    "divano angolare;4;https://rivale.it/angolari;3000;55\n"
)


@pytest.fixture
def primary_csv():
    return PRIMARY_CSV


@pytest.fixture
def competitor_csv():
    return COMPETITOR_CSV
