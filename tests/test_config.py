"""
Tests for run options and configuration file handling.
"""

import configparser
import os

import pytest

from nemopy.config import (RunOptions, apply_config, find_config_file, infer_value, parse_calcyears,
                           parse_solver_parameters, read_config, split_names)


def make_parser(text, source_path=None):
    parser = configparser.ConfigParser(interpolation=None)
    parser.read_string(text)
    if source_path:
        parser.source_path = source_path
    return parser


class TestParsing:
    """Test the small parsers used for arguments and configuration values"""

    def test_parse_calcyears_groups_and_years(self):
        assert parse_calcyears("2020|2025,2030") == [[2020, 2025], [2030]]

    def test_parse_calcyears_ignores_blank_groups(self):
        assert parse_calcyears("2020, ,2030|2035") == [[2020], [2030, 2035]]

    def test_parse_calcyears_rejects_non_integers(self):
        with pytest.raises(ValueError):
            parse_calcyears("2020|abc")

    def test_split_names_lowercases_and_deduplicates(self):
        assert split_names("vNewCapacity, vtrade,vnewcapacity,,") == ["vnewcapacity", "vtrade"]

    def test_split_names_accepts_lists(self):
        assert split_names(["vtrade", "VTRADE", "vusenn"]) == ["vtrade", "vusenn"]

    @pytest.mark.parametrize("text, expected", [
        ("600", 600),
        ("0.01", 0.01),
        ("true", True),
        ("False", False),
        ("on", "on"),
    ])
    def test_infer_value_order(self, text, expected):
        value = infer_value(text)
        assert value == expected
        assert type(value) is type(expected)

    def test_parse_solver_parameters(self):
        parameters = parse_solver_parameters("time_limit=600, mip_rel_gap=0.01,presolve=on,bad")
        assert parameters == {"time_limit": 600, "mip_rel_gap": 0.01, "presolve": "on"}


class TestApplyConfig:
    """Test precedence rules between arguments and the configuration file"""

    def test_no_parser_leaves_options_unchanged(self):
        options = RunOptions(quiet=True)
        assert apply_config(options, None) is options
        assert options.quiet is True

    def test_values_override_arguments(self):
        options = RunOptions(calcyears=[[2020]], restrictvars=True, startvalsdbpath="a.sqlite")
        parser = make_parser("""
[calculatescenarioargs]
calcyears = 2020|2025,2030
restrictvars = false
forcemip = yes
startvalsdbpath = "seed db.sqlite"
""")
        apply_config(options, parser)
        assert options.calcyears == [[2020, 2025], [2030]]
        assert options.restrictvars is False
        assert options.forcemip is True
        assert options.startvalsdbpath == "seed db.sqlite"

    def test_varstosave_extends_argument_list(self):
        options = RunOptions(varstosave=["vnewcapacity"])
        apply_config(options, make_parser("[calculatescenarioargs]\nvarstosave = vTrade, vnewcapacity\n"))
        assert options.varstosave == ["vnewcapacity", "vtrade"]

    def test_unparseable_values_are_ignored(self, caplog):
        options = RunOptions(reportzeros=False, calcyears=[[2020]])
        parser = make_parser("[calculatescenarioargs]\nreportzeros = maybe\ncalcyears = 20x0\n")
        apply_config(options, parser)
        assert options.reportzeros is False
        assert options.calcyears == [[2020]]
        assert "reportzeros" in caplog.text

    def test_solver_parameters_and_includes(self, tmp_path, monkeypatch):
        workdir = tmp_path / "work"
        workdir.mkdir()
        monkeypatch.chdir(workdir)
        source = str(tmp_path / "settings" / "nemo.ini")
        parser = make_parser("""
[solver]
parameters = time_limit=60,presolve=off

[includes]
beforescenariocalc = before.py
customconstraints = /abs/custom.py
""", source_path=source)
        options = apply_config(RunOptions(), parser)
        assert options.solver_parameters == {"time_limit": 60, "presolve": "off"}
        # Relative to the working directory, not to the configuration file
        assert options.beforescenariocalc == os.path.join(os.getcwd(), "before.py")
        assert options.customconstraints == "/abs/custom.py"


class TestConfigFile:
    """Test configuration file discovery"""

    def test_find_config_file_prefers_ini(self, tmp_path):
        (tmp_path / "nemo.cfg").write_text("[solver]\n")
        (tmp_path / "nemo.ini").write_text("[solver]\n")
        assert find_config_file(str(tmp_path)) == str(tmp_path / "nemo.ini")

    def test_read_config_missing_returns_none(self, no_config):
        assert read_config() is None

    def test_read_config_records_source(self, tmp_path):
        path = tmp_path / "nemo.cfg"
        path.write_text("[calculatescenarioargs]\nquiet = true\n")
        parser = read_config(str(path))
        assert parser.getboolean("calculatescenarioargs", "quiet") is True
        assert parser.source_path == os.path.abspath(str(path))

    def test_restrictyears_follows_calcyears(self):
        assert RunOptions().restrictyears is False
        assert RunOptions(calcyears=[[2020]]).restrictyears is True
