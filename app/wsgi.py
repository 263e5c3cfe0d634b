from app.spipuniform import create_app

app = create_app()
