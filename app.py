import logging
import os

from flask import Flask, jsonify

from core import config
from core.database import db
from api_v1 import api_v1

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

app = Flask(__name__)

# Register API
app.register_blueprint(api_v1, url_prefix='/api/v1')

# Schema
db.initialize_schema()


@app.route('/api/health')
def health():
    try:
        with db.get_connection() as conn:
            conn.execute("SELECT 1")
        return jsonify({'status': 'ok', 'db': 'connected'})
    except Exception as e:
        app.logger.error(f"Health check failed: {e}")
        return jsonify({'status': 'error', 'db': 'disconnected'}), 500


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 3001)), threaded=True)
