"""Ponto de entrada WSGI do Nexus Financeiro.

Expõe a variável ``application`` que o servidor (Gunicorn/uWSGI/EB) procura.
"""

import logging
import os

from application import create_app

application = create_app()

# Alias para compatibilidade com código que usa "app"
app = application


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    logging.getLogger('werkzeug').setLevel(logging.ERROR)
    application.run(host='0.0.0.0', port=port)
