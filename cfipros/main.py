from cfipros.factory import create_app

# gunicorn entrypoint
app = create_app()
