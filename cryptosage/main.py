from __future__ import annotations

import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication

from cryptosage.config import config
from cryptosage.services import AppServices
from cryptosage.util.env import fix_ssl_env

logger = logging.getLogger(__name__)


def main() -> int:
    settings = config()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    fix_ssl_env()
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    app = QCoreApplication(sys.argv)
    services = AppServices(settings)
    services.order_book.bookChanged.connect(
        lambda book: logger.info(f"{services.order_book.symbol} book from {book.venue or 'cache'}: "
                                 f"bid {book.best_bid.price if book.best_bid else '-'} "
                                 f"ask {book.best_ask.price if book.best_ask else '-'}")
    )
    services.order_book.errorChanged.connect(lambda msg: msg and logger.warning(msg))
    services.portfolio.summaryChanged.connect(
        lambda s: logger.info(f"Portfolio {s['total_value_string']} ({s['daily_change_percent_string']})")
    )
    app.aboutToQuit.connect(services.stop)
    services.start()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
