from __future__ import annotations
import os
from booking import create_app

def main() -> None:
    flask_app = create_app()

    store = flask_app.extensions["schedule_store"]
    flask_app.logger.info(
        "Booking engine on %s (lock timeout %d ms, %d booking retries, notifications %s)",
        store.dialect,
        store.lock_timeout_ms,
        flask_app.config["BOOKING_MAX_RETRIES"],
        "async" if flask_app.config["NOTIFICATIONS_ASYNC"] else "inline",
    )

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled, threaded=True)

if __name__ == "__main__":
    main()
