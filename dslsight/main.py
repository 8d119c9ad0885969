"""Main entrypoint: acquisition supervisor + Flask web server."""

import logging
import os
import sys
import threading
import time

from . import drivers, web
from .config import ConfigManager
from .drivers.base import KNOWN_HOSTS_IGNORE
from .supervisor import Supervisor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("dslsight.main")


def run_web(host, port):
    """Run production web server in a separate thread."""
    from waitress import serve
    serve(web.app, host=host, port=port, threads=4, _quiet=True)


def main():
    data_dir = os.environ.get("DATA_DIR", "/data")
    config_mgr = ConfigManager(data_dir)

    log.info("DSLSight starting")

    drivers.register_all()
    if not config_mgr.is_configured():
        log.error("No device type configured. Supported: %s", ", ".join(drivers.registry.types()))
        return 2

    try:
        driver_config = config_mgr.to_driver_config()
        drivers.registry.validate(driver_config)
    except (OSError, ValueError) as e:
        log.error("Invalid configuration: %s", e)
        return 2

    if driver_config.known_hosts == KNOWN_HOSTS_IGNORE:
        log.warning("Host key verification is disabled")

    desc = drivers.registry.desc(driver_config.type)
    log.info("Device: %s (%s)", desc.title, driver_config.host or "no host")

    supervisor = Supervisor(
        driver_config,
        state_dir=config_mgr.get_state_dir(),
        interval_default=config_mgr.get("interval_default"),
        interval_short=config_mgr.get("interval_short"),
    )
    web.init_supervisor(supervisor, desc.title)
    supervisor.start()

    web_host = config_mgr.get("web_host")
    web_port = config_mgr.get("web_port")
    web_thread = threading.Thread(target=run_web, args=(web_host, web_port), daemon=True)
    web_thread.start()
    log.info("Web UI started on http://%s:%d", web_host, web_port)

    # Keep main thread alive
    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        log.info("Shutting down")
        web.shutdown()
        supervisor.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
