from celery import Celery

# Create Celery app
celery = Celery("dailyping")

# Load configuration from dailyping.config.celeryconfig module
celery.config_from_object("dailyping.config.celeryconfig")
