from lms_scheduler import create_app, db
from lms_scheduler.models import (
    User, Class, ClassSession, SessionHistory, SessionParticipant, BillingTransaction
)

# Create Flask application instance
app = create_app()

@app.shell_context_processor
def make_shell_context():
    return {
        'db': db,
        'User': User,
        'Class': Class,
        'ClassSession': ClassSession,
        'SessionHistory': SessionHistory,
        'SessionParticipant': SessionParticipant,
        'BillingTransaction': BillingTransaction
    }

def initialize_database():
    """Initialize database tables if needed"""
    with app.app_context():
        try:
            # Test if tables exist by making a simple query
            Class.query.first()
            print("✅ Database tables already exist")
        except Exception as e:
            db.session.rollback()
            print(f"⚠️  Creating database tables: {str(e)}")
            try:
                db.create_all()
                print("✅ Database tables created successfully")
            except Exception as create_error:
                print(f"❌ Error creating tables: {str(create_error)}")

def display_config_info():
    """Display important configuration information"""
    print("=" * 60)
    print("🚀 LMS Scheduler - Configuration")
    print("=" * 60)
    print(f"🗄️  Database: {app.config.get('SQLALCHEMY_DATABASE_URI', 'SQLite')[:50]}...")
    print(f"🕒 Timezone: {app.config.get('TIMEZONE')}")
    print(f"💱 Currencies: {', '.join(app.config.get('SUPPORTED_CURRENCIES', []))}")
    print(f"🪪 Actor Header: {app.config.get('ACTOR_HEADER')}")
    print(f"🐛 Debug Mode: {app.config.get('DEBUG', False)}")
    print(f"🔐 Secret Key: {'Set' if app.config.get('SECRET_KEY') else 'Not Set'}")
    print("=" * 60)

if __name__ == '__main__':
    print("🚀 Starting LMS Scheduler...")

    # Display configuration
    display_config_info()

    # Initialize database
    initialize_database()

    app.run(debug=app.config.get('DEBUG', False), host='0.0.0.0', port=5000, threaded=True)
