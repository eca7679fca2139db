from disaster_training.models.database_models import (
    User,
    Training,
    TrainingRegistration,
    TrainingFeedback,
)

__all__ = ["User", "Training", "TrainingRegistration", "TrainingFeedback"]
