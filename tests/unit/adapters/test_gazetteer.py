"""
지명 파일 로더 테스트
"""

import openpyxl
import pytest

from safeguard.adapters.gazetteer import load_gazetteer
from safeguard.core.coordinates import GAZETTEER
from safeguard.core.models import Coordinates


def _write_csv(path, text):
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestLoadGazetteer:
    """load_gazetteer 테스트"""

    def test_csv_merges_over_builtin(self, tmp_path):
        path = _write_csv(tmp_path / "places.csv", "Name,Latitude,Longitude\nKlipspruit West,-26.2990,27.9280\n")

        gazetteer = load_gazetteer(path)

        assert gazetteer["klipspruit west"] == Coordinates(latitude=-26.2990, longitude=27.9280)
        assert set(GAZETTEER) <= set(gazetteer)

    def test_file_entries_override_base(self, tmp_path):
        path = _write_csv(tmp_path / "places.csv", "place,lat,lng\nExtension 1,-26.3100,27.9400\n")

        gazetteer = load_gazetteer(path)

        assert gazetteer["extension 1"] == Coordinates(latitude=-26.3100, longitude=27.9400)

    def test_custom_base(self, tmp_path):
        path = _write_csv(tmp_path / "places.csv", "area,lat,lon\nLenasia,-26.3167,27.8333\n")

        gazetteer = load_gazetteer(path, base={})

        assert list(gazetteer) == ["lenasia"]

    def test_bad_rows_skipped(self, tmp_path):
        path = _write_csv(
            tmp_path / "places.csv",
            "name,lat,lon\n"
            "London,51.5072,-0.1276\n"
            "Nowhere,abc,27.9\n"
            ",-26.3,27.9\n"
            "Short,-26.3\n"
            "Riverlea,-26.2125,27.9700\n",
        )

        gazetteer = load_gazetteer(path, base={})

        assert list(gazetteer) == ["riverlea"]

    def test_xlsx(self, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Name", "Latitude", "Longitude"])
        ws.append(["Noordgesig", -26.2333, 27.9500])
        ws.append(["Out of range", 0.0, 0.0])
        path = tmp_path / "places.xlsx"
        wb.save(path)

        gazetteer = load_gazetteer(str(path), base={})

        assert gazetteer == {"noordgesig": Coordinates(latitude=-26.2333, longitude=27.95)}

    def test_empty_file_returns_base(self, tmp_path):
        path = _write_csv(tmp_path / "places.csv", "")

        assert load_gazetteer(path, base={}) == {}

    def test_unsupported_extension(self, tmp_path):
        path = _write_csv(tmp_path / "places.json", "{}")

        with pytest.raises(ValueError):
            load_gazetteer(path)

    def test_missing_column(self, tmp_path):
        path = _write_csv(tmp_path / "places.csv", "name,lat\nRiverlea,-26.2\n")

        with pytest.raises(ValueError, match="경도"):
            load_gazetteer(path)
