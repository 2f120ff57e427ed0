"""Hello world service, the smallest useful wrapped service.

Usage:
    python -m svcwrap.services.hello_world start
    python -m svcwrap.services.hello_world -d --timeout 10 start
    python -m svcwrap.services.hello_world stop

Config (./config/hello_world_service.yaml):
    message: "Hello!"
    interval: 5
"""

from svcwrap.base_service import BaseService
from svcwrap.launchers.runner import main as run_main


class HelloWorldService(BaseService):
    """Logs a message every few seconds until stopped."""

    def start(self):
        message = self.svc_config.get("message", "Hello World!")
        interval = float(self.svc_config.get("interval", 5))
        self.svc_logger.info(f"Hello world service started in {self.environment.get()} mode")
        while self.sleep(interval):
            self.svc_logger.info(message)
        self.svc_logger.info("Hello world service finished")

    def stop(self):
        self.svc_logger.info("Hello world service stopping")


def main():
    run_main(HelloWorldService())


if __name__ == "__main__":
    main()
