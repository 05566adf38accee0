import os
from pos import create_app, db

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# Tables are created on boot; platforms without shell access can't run `flask init-db`
with app.app_context():
    db.create_all()

if __name__ == "__main__":
    app.run()
