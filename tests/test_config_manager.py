"""Configuration loading, dot-notation access and validation."""
import json

from target_recognition.config_manager import DEFAULT_CONFIG, ConfigManager


def test_defaults_without_file(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json"))

    assert config.get('detection.min_match_score') == 0.07
    assert config.get('detection.min_inliers') == 8
    assert config.get('detection.min_target_area') == 0.05
    assert config.get('detection.max_instance_overlap') == 0.5
    assert config.get('detection.max_rounds') is None
    assert config.get('no.such.key', 'fallback') == 'fallback'
    assert config.validation_errors() == []


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"features": {"detector": "SIFT"}, "detection": {"min_inliers": 12}}))

    config = ConfigManager(str(path))

    assert config.get('features.detector') == "SIFT"
    assert config.get('features.extractor') == "ORB"
    assert config.get('detection.min_inliers') == 12
    assert config.get('detection.min_match_score') == 0.07


def test_invalid_json_keeps_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    config = ConfigManager(str(path))

    assert config.load_config() is False
    assert config.get('features.detector') == "ORB"


def test_defaults_are_not_shared(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json"))
    config.set('features.detector', 'AKAZE')

    assert DEFAULT_CONFIG['features']['detector'] == 'ORB'


def test_set_creates_nested_keys(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json"))
    config.set('paths.extra.dir', 'out')
    assert config.get('paths.extra.dir') == 'out'


def test_configuration_tag(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json"))
    assert config.configuration_tag == "ORB_ORB_BruteForce"

    config.set('features.detector', 'FAST')
    config.set('features.extractor', 'BRISK')
    assert config.configuration_tag == "FAST_BRISK_BruteForce"


def test_validation_errors(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json"))
    config.set('detection.min_match_score', 1.5)
    config.set('detection.max_rounds', 0)
    config.set('matching.ratio', 0)
    config.set('workers', -2)
    config.set('detection.max_instance_overlap', 1.5)

    errors = config.validation_errors()

    assert len(errors) == 5
    assert "detection.max_instance_overlap must be between 0 and 1" in errors
    assert config.validate_config() is False


def test_save_keeps_backup(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"workers": 2}))
    config = ConfigManager(str(path))
    config.set('workers', 4)

    assert config.save_config()

    assert json.loads(path.read_text())['workers'] == 4
    backups = list(tmp_path.glob("config.json.backup.*"))
    assert len(backups) == 1
    assert json.loads(backups[0].read_text()) == {"workers": 2}
