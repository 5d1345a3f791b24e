from app.tourdesk import create_app

app = create_app()
