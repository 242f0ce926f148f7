# TaskFlow API module
