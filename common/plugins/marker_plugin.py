import pytest

LAYERS = ("unit", "contract", "integration", "e2e")


# Hook 1: 注册测试分层标记
def pytest_configure(config):
    """注册自定义标记"""
    config.addinivalue_line("markers", "unit: 纯计算单元测试")
    config.addinivalue_line("markers", "contract: 记录结构（持久化契约）测试")
    config.addinivalue_line("markers", "integration: 会话状态与计算组合测试")
    config.addinivalue_line("markers", "e2e: 端到端购物流程测试")
    config.addinivalue_line("markers", "property: 对参数网格断言不变量")
    config.addinivalue_line("markers", "slow: 慢测试，--env=prod 时跳过")


# Hook 2: 按环境过滤并按分层排序
def pytest_collection_modifyitems(config, items):
    """生产环境跳过慢测试；unit -> contract -> integration -> e2e 排序"""
    if config.getoption("--env") == "prod":
        for item in items:
            if item.get_closest_marker("slow"):
                item.add_marker(pytest.mark.skip(reason="生产环境跳过慢测试"))

    def item_priority(item):
        markers = [m.name for m in item.iter_markers()]
        for i, layer in enumerate(LAYERS):
            if layer in markers:
                return i
        return len(LAYERS)

    items.sort(key=item_priority)


# Hook 3: 测试结束后输出分层统计
def pytest_terminal_summary(terminalreporter, exitstatus):
    """自定义测试结束后的输出摘要"""
    counts = terminalreporter.stats
    passed = len(counts.get("passed", []))
    failed = len(counts.get("failed", []))
    skipped = len(counts.get("skipped", []))
    terminalreporter.write_sep("=", "prexiopa: 用例统计")
    terminalreporter.write_line(f"通过: {passed}  失败: {failed}  跳过: {skipped}")
