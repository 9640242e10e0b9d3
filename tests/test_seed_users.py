from app.models.user import User
from scripts.seed_users import SAMPLE_USERS, seed


def test_seed_is_repeatable(db_session):
    assert seed(db_session) == len(SAMPLE_USERS)
    assert seed(db_session) == 0

    alex = db_session.query(User).filter(User.email == "alex@example.com").one()
    assert "Python" in alex.skills
    assert alex.learning_goals[0] == "React"
