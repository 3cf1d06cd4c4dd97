from warfog import create_app, socketio
from warfog.services.sweeps import start_sweepers

app = create_app()

if __name__ == '__main__':
    start_sweepers(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True, use_reloader=False)
