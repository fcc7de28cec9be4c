import logging

import pytest

from prexiopa.tax import PANAMA_TAX_RATES

# 激活自定义插件
pytest_plugins = [
    "common.plugins.marker_plugin",
    "common.plugins.backend_plugin",
]


def pytest_addoption(parser):
    parser.addoption("--env", action="store", default="dev", help="运行环境")


@pytest.fixture(scope="session")
def env(pytestconfig):
    return pytestconfig.getoption("--env")


@pytest.fixture(scope="function")
def prexiopa_env(monkeypatch):
    # 环境变量覆盖配置
    monkeypatch.setenv("PREXIOPA_HISTORY_LIMIT", "2")
    monkeypatch.setenv("PREXIOPA_DEFAULT_TAX_RATE", "exempt")
    yield
    monkeypatch.delenv("PREXIOPA_HISTORY_LIMIT", raising=False)
    monkeypatch.delenv("PREXIOPA_DEFAULT_TAX_RATE", raising=False)


@pytest.fixture(scope="function")
def log_capture(caplog):
    caplog.set_level(logging.DEBUG, logger="prexiopa")
    return caplog


def pytest_generate_tests(metafunc):
    if "rate_code" in metafunc.fixturenames:
        codes = [r.code for r in PANAMA_TAX_RATES]
        metafunc.parametrize("rate_code", codes, ids=codes)
