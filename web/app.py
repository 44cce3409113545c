from flask import Flask, current_app, jsonify, request
from services.config import Settings, load_settings
from services.errors import StartupError
from services.logutil import configure_logging
from services.pipeline import FilterPipeline
from services.rule_loader import load_rules
from services.rules import Rule

import logging
from typing import Optional, Sequence


logger = logging.getLogger(__name__)


def _text(body: str, status: int = 200):
    return current_app.response_class(body, status=status, mimetype='text/plain; charset=utf-8')


def _pipeline() -> FilterPipeline:
    return current_app.extensions['danmaku_filter']


def create_app(settings: Optional[Settings] = None, rules: Optional[Sequence[Rule]] = None) -> Flask:
    """Build the Flask app.

    Settings come from the environment and rules from the configured directory
    unless given. Both are resolved before the app exists; a StartupError here
    means nothing is served.
    """
    if settings is None:
        settings = load_settings()
    if rules is None:
        rules = load_rules(settings.rules_dir)

    app = Flask(__name__)
    app.extensions['danmaku_filter'] = FilterPipeline(settings, rules)

    @app.route('/ping', methods=['GET', 'POST'])
    def ping():
        return _text('pong')

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"ok": True, "rules": len(_pipeline().rules)}), 200

    @app.route('/filter', methods=['GET'])
    def filter_danmaku():
        url = (request.args.get('id') or '').strip()
        outcome = _pipeline().run(url)
        # Failures stay on 200 with a plain-text body; clients key off the body.
        if not outcome.ok:
            return _text(outcome.error.public_message)
        return jsonify(outcome.result.envelope()), 200

    return app


def main() -> int:
    configure_logging()
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        app = create_app(settings)
    except StartupError as e:
        logger.critical('%s', e)
        return 1
    app.run(host=settings.listen_host, port=settings.listen_port, threaded=True)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
