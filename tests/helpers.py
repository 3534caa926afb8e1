from datetime import datetime, timedelta

from roomcredits.booking.models import User


def at(hour, minute=0, day=4):
    # mars 2031 : toujours dans le futur
    return datetime(2031, 3, day) + timedelta(hours=hour, minutes=minute)


def balance(session, user_id):
    session.expire_all()
    return session.get(User, user_id).current_credits
