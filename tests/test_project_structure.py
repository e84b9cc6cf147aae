"""
Tests for verifying the project structure is correct.
"""

import os

# Get the project root directory
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class TestProjectStructure:
    """Tests for verifying the project directory structure."""

    def test_package_directory_exists(self):
        package_path = os.path.join(PROJECT_ROOT, "transformer_core")
        assert os.path.isdir(package_path), "transformer_core/ directory should exist"

    def test_package_init_exists(self):
        init_path = os.path.join(PROJECT_ROOT, "transformer_core", "__init__.py")
        assert os.path.isfile(init_path), "transformer_core/__init__.py should exist"

    def test_tests_init_exists(self):
        init_path = os.path.join(PROJECT_ROOT, "tests", "__init__.py")
        assert os.path.isfile(init_path), "tests/__init__.py should exist"

    def test_configs_init_exists(self):
        init_path = os.path.join(PROJECT_ROOT, "configs", "__init__.py")
        assert os.path.isfile(init_path), "configs/__init__.py should exist"

    def test_base_config_json_exists(self):
        config_path = os.path.join(PROJECT_ROOT, "configs", "base_config.json")
        assert os.path.isfile(config_path), "configs/base_config.json should exist"

    def test_pyproject_declares_dependencies(self):
        with open(os.path.join(PROJECT_ROOT, "pyproject.toml"), "r") as f:
            content = f.read()
        assert "torch" in content, "pyproject.toml should depend on torch"
        assert "pytest" in content, "pyproject.toml should list pytest for tests"

    def test_public_api(self):
        import transformer_core

        for name in (
            "ScaledDotProductAttention",
            "MultiHeadAttention",
            "TransformerEncoder",
            "TransformerDecoder",
            "Seq2SeqTransformer",
            "SequenceGenerator",
            "ShapeError",
        ):
            assert hasattr(transformer_core, name), name
