from app.redline import create_app

app = create_app()
