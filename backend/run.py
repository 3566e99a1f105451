from rinkside import create_app, socketio

app = create_app()

if __name__ == '__main__':
    if app.config.get('SYNC_ENABLED'):
        app.extensions['sync_scheduler'].start()
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True, use_reloader=False)
