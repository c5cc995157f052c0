# backend/wsgi.py
# FLASK_APP=wsgi.py for the CLI; serve `application` for HTTP + Socket.IO.
import socketio

from marketplace import create_app

app = create_app()

# Socket.IO handshake under /socket.io, everything else goes to Flask
application = socketio.WSGIApp(app.extensions["marketplace.socketio"], app)

if __name__ == "__main__":
    from werkzeug.serving import run_simple

    run_simple("0.0.0.0", 5000, application, threaded=True)
