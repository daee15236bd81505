from .database import DatabaseConnection

if __name__ == "__main__":
    db = DatabaseConnection()
    db.init_db()
    print("Tables created successfully")
