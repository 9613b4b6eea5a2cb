import pytest
import fsmc.error


def pytest_addoption(parser):
    parser.addoption(
        "--fsmc-debug",
        action="store_true",
        default=False,
        help="Show the compiler stack trace in rendered compile errors",
    )


@pytest.fixture(autouse=True)
def configure_fsmc_debug(request):
    """Automatically configure fsmc.error.debug based on --fsmc-debug flag."""
    original_debug = fsmc.error.debug
    fsmc.error.debug = request.config.getoption("--fsmc-debug")
    yield
    fsmc.error.debug = original_debug
