import json
from typing import Any, Dict, List

import pytest
import yaml

from prexiopa.config import load_settings
from prexiopa.models import ShoppingSession
from prexiopa.session import ShoppingSessionStore


def pytest_addoption(parser):
    """添加自定义命令行参数"""
    group = parser.getgroup("prexiopa", "prexiopa 测试选项")
    group.addoption(
        "--settings-file",
        action="store",
        default=None,
        help="YAML 配置文件路径（默认使用内置默认值）",
    )


class FakeBackend:
    """模拟持久化协作方：订阅 store 并保存会话记录快照"""

    def __init__(self):
        self.saved: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []

    def on_change(self, store: ShoppingSessionStore) -> None:
        sessions = list(store.recent_sessions)
        if store.current_session is not None:
            sessions.append(store.current_session)
        for s in sessions:
            # 经 JSON 往返，确认记录可序列化
            self.saved[s.id] = json.loads(json.dumps(s.to_dict()))
        self.calls.append("save")

    def load(self, session_id: str) -> ShoppingSession:
        self.calls.append("load")
        return ShoppingSession.from_dict(self.saved[session_id])


@pytest.fixture(scope="session")
def settings(pytestconfig):
    """提供配置：--settings-file 指定时从 YAML 加载"""
    return load_settings(pytestconfig.getoption("--settings-file"), environ={})


@pytest.fixture
def store(settings):
    return ShoppingSessionStore(settings)


@pytest.fixture
def backend(store):
    fake = FakeBackend()
    unsubscribe = store.subscribe(fake.on_change)
    yield fake
    unsubscribe()
    fake.calls.clear()


@pytest.fixture
def settings_file(tmp_path):
    """写入临时 YAML 配置文件"""

    def write(data: Dict[str, Any]) -> str:
        p = tmp_path / "prexiopa.yaml"
        p.write_text(yaml.safe_dump(data), encoding="utf-8")
        return str(p)

    return write
