"""Mini-game sessions: record the result, award the fixed game points"""
import logging
from typing import Union

from pydantic import ValidationError as PydanticValidationError

from healthquest.db.gateway import DataGateway
from healthquest.exceptions import ValidationError
from healthquest.gamification.points_ledger import GAME_SESSION_POINTS, PointsLedger
from healthquest.models.activity import GameSession, GameType
from healthquest.models.session import Session

logger = logging.getLogger(__name__)

GAMES_COLLECTION = "game_sessions"


class GameService:
    """Append-only game sessions plus their point award"""

    def __init__(self, gateway: DataGateway, ledger: PointsLedger):
        self.gateway = gateway
        self.ledger = ledger

    async def record_game(self, session: Session, game_type: Union[GameType, str], score: int) -> int:
        """
        Save a finished game and award GAME_SESSION_POINTS.

        Args:
            session: Authenticated session
            game_type: Clicker or Memory
            score: Final score (>= 0)

        Returns:
            Points awarded

        Raises:
            ValidationError: unknown game type or negative score
            PersistenceError: the session row or the award failed to save
        """
        user = session.require_user()
        try:
            game = GameSession(user_id=user.id, game_type=game_type, score=score)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid game result: {e.errors()[0]['msg']}",
                field="game",
                value={"gameType": str(game_type), "score": score},
                user_id=user.id,
                operation="record_game",
            ) from e

        await self.gateway.insert(GAMES_COLLECTION, [game.to_record()])
        await self.ledger.award_to_session(session, GAME_SESSION_POINTS, source=f"{game.game_type.value} game")
        logger.info(f"Recorded {game.game_type.value} game for user {user.id} (score {score})")
        return GAME_SESSION_POINTS
