# skybox_app/wsgi.py
from skybox_app import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
