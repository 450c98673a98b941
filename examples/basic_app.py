"""Run the paygate site with an in-process SQLite database.

Run with::

    FLASK_SECRET_KEY=change-me FLASK_STRIPE_SECRET_KEY=sk_test_... python examples/basic_app.py

Then open http://localhost:5000/ and register an account. Create an admin
with ``flask --app examples.basic_app paygate create-user NAME EMAIL --admin``
to reach http://localhost:5000/admin/.
"""

from flask_paygate.app import create_app, db

app = create_app({"SQLALCHEMY_DATABASE_URI": "sqlite:///paygate_example.db"})

with app.app_context():
    db.create_all()

if __name__ == "__main__":
    app.run(debug=True)
