from app.steward import create_app

app = create_app()
