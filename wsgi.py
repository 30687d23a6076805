"""
Process entry points.

    gunicorn wsgi:app                   # JSON API
    rq worker --url $REDIS_URL default  # scraping jobs and due-mapping sweeps
    flask --app wsgi run-due-mappings   # cron: enqueue the periodic sweep
"""
import os

from workloom import create_app

app = create_app()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', '8080')), debug=os.getenv('FLASK_DEBUG') == '1')
